"""Data models for rollout templates and their supporting types."""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _Model(BaseModel):
    """Base model using the camelCase field names of the persisted layout."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the persisted (camelCase) layout."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class LifecycleState(str, Enum):
    """Revision lifecycle state."""

    ACTIVE = "Active"
    PAUSED = "Paused"
    ARCHIVED = "Archived"


class ProbeType(str, Enum):
    """Readiness probe type."""

    CONDITION = "Condition"
    FIELDS_EQUAL = "FieldsEqual"


class ProbeSelectorType(str, Enum):
    """Probe selector type."""

    KIND = "Kind"


class DependencyType(str, Enum):
    """Revision dependency type."""

    KUBERNETES_API = "KubernetesAPI"


class ProbeConditionSpec(_Model):
    """Condition probe parameters."""

    type: str
    status: str = "True"


class ProbeFieldsEqualSpec(_Model):
    """Compares two fields specified by dotted paths."""

    field_a: str
    field_b: str


class ProbeSpec(_Model):
    """A single probe definition."""

    type: ProbeType
    condition: Optional[ProbeConditionSpec] = None
    fields_equal: Optional[ProbeFieldsEqualSpec] = None


class ProbeKindSpec(_Model):
    """Group and kind a probe applies to."""

    group: str = ""
    kind: str


class ProbeSelector(_Model):
    """Restricts which objects a probe targets."""

    type: ProbeSelectorType = ProbeSelectorType.KIND
    kind: Optional[ProbeKindSpec] = None


class ObjectSetProbe(_Model):
    """
    Readiness probes for the members of a revision.

    All probes need to succeed on matching objects for a phase to pass.
    """

    probes: list[ProbeSpec]
    selector: ProbeSelector


class PhaseObject(_Model):
    """
    An object that is part of a phase.

    The object is kept as an opaque document; it is only parsed when the
    phase is reconciled.
    """

    object: Any


class ObjectPhase(_Model):
    """An ordered group of objects reconciled together."""

    name: str
    class_: str = Field(default="", alias="class")
    objects: list[PhaseObject] = Field(default_factory=list)


class KubernetesAPIDependency(_Model):
    """An API the cluster has to serve before the revision is reconciled."""

    group: str = ""
    version: str
    kind: str


class ObjectSetDependency(_Model):
    """Prerequisite of a revision."""

    type: DependencyType = DependencyType.KUBERNETES_API
    kubernetes_api: Optional[KubernetesAPIDependency] = Field(
        default=None, alias="kubernetesAPI"
    )


class ObjectSetTemplateSpec(_Model):
    """Phases, probes and dependencies shared by a template and its revisions."""

    phases: list[ObjectPhase] = Field(default_factory=list)
    readiness_probes: list[ObjectSetProbe] = Field(default_factory=list)
    dependencies: list[ObjectSetDependency] = Field(default_factory=list)


class TemplateMetadata(_Model):
    """Metadata stamped onto revisions created from a template."""

    labels: dict[str, str] = Field(default_factory=dict)


class ObjectSetTemplate(_Model):
    """Template a deployment materializes into revisions."""

    metadata: TemplateMetadata = Field(default_factory=TemplateMetadata)
    spec: ObjectSetTemplateSpec = Field(default_factory=ObjectSetTemplateSpec)


class PausedObject(_Model):
    """Identifies an object whose reconciliation is paused."""

    group: str = ""
    kind: str
    name: str


class LabelSelectorOperator(str, Enum):
    """Set-based label selector operator."""

    IN = "In"
    NOT_IN = "NotIn"
    EXISTS = "Exists"
    DOES_NOT_EXIST = "DoesNotExist"


class LabelSelectorRequirement(_Model):
    """A single set-based label requirement."""

    key: str
    operator: LabelSelectorOperator
    values: list[str] = Field(default_factory=list)

    def matches(self, labels: dict[str, str]) -> bool:
        if self.operator == LabelSelectorOperator.IN:
            return self.key in labels and labels[self.key] in self.values
        if self.operator == LabelSelectorOperator.NOT_IN:
            return self.key not in labels or labels[self.key] not in self.values
        if self.operator == LabelSelectorOperator.EXISTS:
            return self.key in labels
        return self.key not in labels

    def __str__(self) -> str:
        if self.operator == LabelSelectorOperator.IN:
            return f"{self.key} in ({','.join(self.values)})"
        if self.operator == LabelSelectorOperator.NOT_IN:
            return f"{self.key} notin ({','.join(self.values)})"
        if self.operator == LabelSelectorOperator.EXISTS:
            return self.key
        return f"!{self.key}"


class LabelSelector(_Model):
    """Label selector scoping which revisions belong to a deployment."""

    match_labels: dict[str, str] = Field(default_factory=dict)
    match_expressions: list[LabelSelectorRequirement] = Field(default_factory=list)

    def matches(self, labels: dict[str, str]) -> bool:
        for key, value in self.match_labels.items():
            if labels.get(key) != value:
                return False
        return all(expr.matches(labels) for expr in self.match_expressions)

    def __str__(self) -> str:
        parts = [f"{k}={v}" for k, v in sorted(self.match_labels.items())]
        parts.extend(str(expr) for expr in self.match_expressions)
        return ",".join(parts)


class Condition(_Model):
    """Status condition as persisted on revisions and deployments."""

    type: str
    status: str
    reason: str = ""
    message: str = ""
    observed_generation: int = 0
    last_transition_time: Optional[str] = None
