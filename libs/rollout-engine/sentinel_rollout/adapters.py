"""Resource kinds served by the engine and typed adapters over them."""

from dataclasses import dataclass
from typing import Any, Optional, Protocol, TypeVar

from pydantic import BaseModel, ValidationError

from . import conditions as cond
from .document import Document, GroupKind, GroupVersionKind
from .errors import TemplateError
from .models import (
    LabelSelector,
    LifecycleState,
    ObjectPhase,
    ObjectSetDependency,
    ObjectSetProbe,
    ObjectSetTemplate,
    ObjectSetTemplateSpec,
    PausedObject,
)

API_GROUP = "packages.sentinel.io"
API_VERSION = "v1alpha1"

HASH_ANNOTATION = f"{API_GROUP}/hash"
REVISION_ANNOTATION = f"{API_GROUP}/revision"
OBJECT_SET_LABEL = f"{API_GROUP}/object-set"
CACHE_FINALIZER = f"{API_GROUP}/object-set-cache"

# status.phase values
PHASE_AVAILABLE = "Available"
PHASE_NOT_READY = "NotReady"
PHASE_ARCHIVED = "Archived"
PHASE_PROGRESSING = "Progressing"
PHASE_MISSING_DEPENDENCY = "MissingDependency"

REASON_MISSING_DEPENDENCY = "MissingDependency"

M = TypeVar("M", bound=BaseModel)


def _gvk(kind: str) -> GroupVersionKind:
    return GroupVersionKind(API_GROUP, API_VERSION, kind)


@dataclass(frozen=True)
class RevisionKinds:
    """The deployment, revision and phase object kinds of one scope."""

    deployment: GroupVersionKind
    revision: GroupVersionKind
    phase: GroupVersionKind
    cluster_scoped: bool = False

    def __str__(self) -> str:
        return "cluster" if self.cluster_scoped else "namespaced"


NAMESPACED = RevisionKinds(
    deployment=_gvk("ObjectDeployment"),
    revision=_gvk("ObjectSet"),
    phase=_gvk("ObjectSetPhase"),
)

CLUSTER = RevisionKinds(
    deployment=_gvk("ClusterObjectDeployment"),
    revision=_gvk("ClusterObjectSet"),
    phase=_gvk("ClusterObjectSetPhase"),
    cluster_scoped=True,
)


def _parse(model: type[M], data: Any, what: str) -> M:
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise TemplateError(f"invalid {what}: {e}") from e


def member_label_value(owner: Document) -> str:
    """Label value identifying the owner of a member object."""
    return str(owner.key).replace("/", "-").strip("-")


def paused_object_matches(paused: PausedObject, obj: Document) -> bool:
    return (
        paused.group == obj.gvk.group
        and paused.kind == obj.kind
        and paused.name == obj.name
    )


def paused_objects_from_phases(phases: list[ObjectPhase]) -> list[PausedObject]:
    """
    List every member object of the given phases as a paused object.

    Raises:
        MalformedObjectError: If a member object spec does not parse
    """
    paused = []
    for phase in phases:
        for phase_object in phase.objects:
            obj = Document.from_spec(phase_object.object)
            paused.append(PausedObject(group=obj.gvk.group, kind=obj.kind, name=obj.name))
    return paused


def paused_for_dicts(paused: list[PausedObject]) -> list[dict[str, Any]]:
    return [p.to_dict() for p in paused]


class PausingOwner(Protocol):
    """Owner of member objects that can exempt some of them from reconciliation."""

    doc: Document

    def is_object_paused(self, obj: Document) -> bool: ...


class _Adapter:
    """Common accessors of the engine's own kinds."""

    def __init__(self, doc: Document):
        self.doc = doc

    @property
    def conditions(self) -> list[dict[str, Any]]:
        return self.doc.conditions

    @property
    def generation(self) -> int:
        return self.doc.generation

    def set_condition(self, condition_type: str, status: str, reason: str, message: str) -> None:
        """Set a condition observed at the current generation."""
        cond.set_condition(
            self.conditions, condition_type, status, reason, message, self.generation
        )

    def remove_condition(self, condition_type: str) -> None:
        cond.remove_condition(self.conditions, condition_type)

    def _paused_list(self, holder: dict[str, Any]) -> list[PausedObject]:
        return [_parse(PausedObject, p, "pausedFor entry") for p in holder.get("pausedFor") or []]

    @property
    def spec_paused_for(self) -> list[PausedObject]:
        return self._paused_list(self.doc.spec)

    def set_spec_paused_for(self, paused: list[PausedObject]) -> None:
        if paused:
            self.doc.spec["pausedFor"] = paused_for_dicts(paused)
        else:
            self.doc.spec.pop("pausedFor", None)

    @property
    def status_paused_for(self) -> list[PausedObject]:
        return self._paused_list(self.doc.status)

    def set_status_paused_for(self, paused: list[PausedObject]) -> None:
        if paused:
            self.doc.status["pausedFor"] = paused_for_dicts(paused)
        else:
            self.doc.status.pop("pausedFor", None)

    def is_paused(self) -> bool:
        return False

    def is_object_paused(self, obj: Document) -> bool:
        if self.is_paused():
            return True
        return any(paused_object_matches(p, obj) for p in self.spec_paused_for)


class RevisionAdapter(_Adapter):
    """
    Revision (ObjectSet / ClusterObjectSet) view.

    Layout::

        metadata.annotations: hash, revision ordinal
        spec: lifecycleState, pausedFor, phases, readinessProbes, dependencies
        status: observedGeneration, conditions, phase, pausedFor
    """

    def template_spec(self) -> ObjectSetTemplateSpec:
        spec = self.doc.spec
        return _parse(
            ObjectSetTemplateSpec,
            {
                "phases": spec.get("phases") or [],
                "readinessProbes": spec.get("readinessProbes") or [],
                "dependencies": spec.get("dependencies") or [],
            },
            f"{self.doc.kind} {self.doc.key}",
        )

    def set_template_spec(self, template_spec: ObjectSetTemplateSpec) -> None:
        self.doc.spec.update(template_spec.to_dict())

    @property
    def phases(self) -> list[ObjectPhase]:
        return self.template_spec().phases

    @property
    def readiness_probes(self) -> list[ObjectSetProbe]:
        return self.template_spec().readiness_probes

    @property
    def dependencies(self) -> list[ObjectSetDependency]:
        return self.template_spec().dependencies

    @property
    def lifecycle_state(self) -> LifecycleState:
        value = self.doc.spec.get("lifecycleState") or LifecycleState.ACTIVE.value
        try:
            return LifecycleState(value)
        except ValueError as e:
            raise TemplateError(f"invalid lifecycleState {value!r}") from e

    def is_archived(self) -> bool:
        return self.lifecycle_state == LifecycleState.ARCHIVED

    def is_paused(self) -> bool:
        return self.lifecycle_state == LifecycleState.PAUSED

    def set_archived(self) -> None:
        self.doc.spec["lifecycleState"] = LifecycleState.ARCHIVED.value

    @property
    def template_hash(self) -> str:
        return self.doc.annotations.get(HASH_ANNOTATION, "")

    @property
    def revision_ordinal(self) -> Optional[int]:
        """Revision number from the annotation, None when absent or unreadable."""
        value = self.doc.annotations.get(REVISION_ANNOTATION)
        if not value:
            return None
        try:
            return int(value)
        except ValueError:
            return None

    def is_available(self) -> bool:
        """Available=True observed at the current generation."""
        return cond.is_condition_true_at(self.conditions, cond.AVAILABLE, self.generation)

    def is_archived_status(self) -> bool:
        return cond.is_condition_true(self.conditions, cond.ARCHIVED)

    def update_phase(self) -> None:
        if cond.is_condition_true(self.conditions, cond.ARCHIVED):
            phase = PHASE_ARCHIVED
        else:
            available = cond.find_condition(self.conditions, cond.AVAILABLE)
            if available is not None and available.get("status") == cond.TRUE:
                phase = PHASE_AVAILABLE
            elif available is not None and available.get("reason") == REASON_MISSING_DEPENDENCY:
                phase = PHASE_MISSING_DEPENDENCY
            else:
                phase = PHASE_NOT_READY
        self.doc.status["phase"] = phase
        self.doc.status["observedGeneration"] = self.generation


class PhaseObjectAdapter(_Adapter):
    """
    Delegated phase object (ObjectSetPhase / ClusterObjectSetPhase) view.

    Layout::

        spec: paused, pausedFor, readinessProbes, name, class, objects
        status: conditions, pausedFor
    """

    @property
    def phase(self) -> ObjectPhase:
        spec = self.doc.spec
        return _parse(
            ObjectPhase,
            {
                "name": spec.get("name", ""),
                "class": spec.get("class", ""),
                "objects": spec.get("objects") or [],
            },
            f"{self.doc.kind} {self.doc.key}",
        )

    def set_phase(self, phase: ObjectPhase) -> None:
        self.doc.spec.update(phase.to_dict())

    @property
    def phase_class(self) -> str:
        return self.doc.spec.get("class") or ""

    @property
    def readiness_probes(self) -> list[ObjectSetProbe]:
        return [
            _parse(ObjectSetProbe, p, "readiness probe")
            for p in self.doc.spec.get("readinessProbes") or []
        ]

    def set_readiness_probes(self, probes: list[ObjectSetProbe]) -> None:
        self.doc.spec["readinessProbes"] = [p.to_dict() for p in probes]

    def is_paused(self) -> bool:
        return bool(self.doc.spec.get("paused"))

    def set_paused(self, paused: bool) -> None:
        if paused:
            self.doc.spec["paused"] = True
        else:
            self.doc.spec.pop("paused", None)


class DeploymentAdapter(_Adapter):
    """
    Deployment (ObjectDeployment / ClusterObjectDeployment) view.

    Layout::

        spec: revisionHistoryLimit, selector, template{metadata, spec}
        status: observedGeneration, conditions, phase, templateHash, collisionCount
    """

    @property
    def selector(self) -> LabelSelector:
        return _parse(
            LabelSelector, self.doc.spec.get("selector") or {}, f"{self.doc.kind} selector"
        )

    @property
    def template(self) -> ObjectSetTemplate:
        return _parse(
            ObjectSetTemplate,
            self.doc.spec.get("template") or {},
            f"{self.doc.kind} {self.doc.key} template",
        )

    @property
    def revision_history_limit(self) -> Optional[int]:
        value = self.doc.spec.get("revisionHistoryLimit")
        return None if value is None else int(value)

    @property
    def collision_count(self) -> Optional[int]:
        value = self.doc.status.get("collisionCount")
        return None if value is None else int(value)

    @collision_count.setter
    def collision_count(self, value: int) -> None:
        self.doc.status["collisionCount"] = value

    @property
    def template_hash(self) -> str:
        return self.doc.status.get("templateHash", "")

    @template_hash.setter
    def template_hash(self, value: str) -> None:
        self.doc.status["templateHash"] = value

    def update_phase(self) -> None:
        available = cond.find_condition(self.conditions, cond.AVAILABLE)
        if available is not None and available.get("status") == cond.TRUE:
            phase = PHASE_AVAILABLE
        elif available is not None and available.get("status") == cond.FALSE:
            phase = PHASE_NOT_READY
        else:
            phase = PHASE_PROGRESSING
        self.doc.status["phase"] = phase
        self.doc.status["observedGeneration"] = self.generation


def kinds_for(group_kind: GroupKind) -> Optional[RevisionKinds]:
    """Return the scope serving the given group and kind, if any."""
    for kinds in (NAMESPACED, CLUSTER):
        if group_kind in (
            kinds.deployment.group_kind,
            kinds.revision.group_kind,
            kinds.phase.group_kind,
        ):
            return kinds
    return None
