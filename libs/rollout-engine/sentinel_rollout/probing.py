"""Readiness probes evaluated against live object state."""

import logging
from abc import ABC, abstractmethod
from typing import Any

from .document import Document, GroupKind, split_path
from .equality import deep_equal
from .models import ObjectSetProbe, ProbeSelectorType, ProbeSpec, ProbeType

logger = logging.getLogger(__name__)


def _observed_generation_outdated(obj: Document, holder: dict[str, Any]) -> bool:
    observed = holder.get("observedGeneration")
    if observed is None:
        return False
    try:
        return int(observed) != obj.generation
    except (TypeError, ValueError):
        return True


class Probe(ABC):
    """A readiness check over a single object."""

    @abstractmethod
    def probe(self, obj: Document) -> tuple[bool, str]:
        """
        Probe the given object.

        Args:
            obj: Live object state

        Returns:
            Tuple of (success, message); the message explains a failure
        """


class ConditionProbe(Probe):
    """Checks that a status condition is present with the given status."""

    def __init__(self, condition_type: str, status: str = "True"):
        self.condition_type = condition_type
        self.status = status

    def probe(self, obj: Document) -> tuple[bool, str]:
        conditions, found = obj.get_nested("status", "conditions")
        if not found or not isinstance(conditions, list):
            return False, "missing .status.conditions"

        for condition in conditions:
            if not isinstance(condition, dict):
                continue
            if condition.get("type") != self.condition_type:
                continue
            if condition.get("status") != self.status:
                return False, (
                    f'condition "{self.condition_type}" == '
                    f'"{condition.get("status")}", want "{self.status}"'
                )
            if _observed_generation_outdated(obj, condition):
                return False, f'condition "{self.condition_type}" outdated'
            return True, ""

        return False, f'missing condition "{self.condition_type}"'

    def __repr__(self) -> str:
        return f"ConditionProbe({self.condition_type}={self.status})"


class FieldsEqualProbe(Probe):
    """Checks that the values under two field paths are equal."""

    def __init__(self, field_a: str, field_b: str):
        self.field_a = field_a
        self.field_b = field_b

    def probe(self, obj: Document) -> tuple[bool, str]:
        status, _ = obj.get_nested("status")
        if isinstance(status, dict) and _observed_generation_outdated(obj, status):
            return False, "status outdated"

        value_a, found = obj.get_nested(*split_path(self.field_a))
        if not found:
            return False, f'"{self.field_a}" missing'
        value_b, found = obj.get_nested(*split_path(self.field_b))
        if not found:
            return False, f'"{self.field_b}" missing'

        if not deep_equal(value_a, value_b):
            return False, (
                f'"{self.field_a}" == "{self.field_b}": {value_a!r} != {value_b!r}'
            )
        return True, ""

    def __repr__(self) -> str:
        return f"FieldsEqualProbe({self.field_a}, {self.field_b})"


class KindSelector(Probe):
    """
    Applies a probe only to objects of one group and kind.

    Objects of any other kind pass vacuously, probes are opt-in by kind.
    """

    def __init__(self, inner: Probe, group_kind: GroupKind):
        self.inner = inner
        self.group_kind = group_kind

    def probe(self, obj: Document) -> tuple[bool, str]:
        if obj.gvk.group_kind != self.group_kind:
            return True, ""
        return self.inner.probe(obj)


class ProbeList(Probe):
    """Combines probes; all of them have to succeed."""

    def __init__(self, probes: list[Probe] | None = None):
        self.probes = list(probes or [])

    def probe(self, obj: Document) -> tuple[bool, str]:
        messages = []
        for probe in self.probes:
            success, message = probe.probe(obj)
            if not success:
                messages.append(message)
        if messages:
            return False, ", ".join(messages)
        return True, ""

    def __len__(self) -> int:
        return len(self.probes)


def parse_probe_specs(specs: list[ProbeSpec]) -> Probe:
    """Build a probe from a list of probe definitions."""
    probes: list[Probe] = []
    for spec in specs:
        if spec.type == ProbeType.CONDITION and spec.condition is not None:
            probes.append(ConditionProbe(spec.condition.type, spec.condition.status))
        elif spec.type == ProbeType.FIELDS_EQUAL and spec.fields_equal is not None:
            probes.append(
                FieldsEqualProbe(spec.fields_equal.field_a, spec.fields_equal.field_b)
            )
        else:
            logger.debug(f"Skipping incomplete {spec.type.value} probe")
    return ProbeList(probes)


def parse_probes(object_set_probes: list[ObjectSetProbe]) -> Probe:
    """
    Build the probe for a revision from its readiness probe specs.

    Args:
        object_set_probes: Readiness probes of the revision

    Returns:
        Probe that evaluates every selector-matching definition
    """
    probes: list[Probe] = []
    for object_set_probe in object_set_probes:
        selector = object_set_probe.selector
        if selector.type != ProbeSelectorType.KIND or selector.kind is None:
            continue

        probes.append(
            KindSelector(
                parse_probe_specs(object_set_probe.probes),
                GroupKind(selector.kind.group, selector.kind.kind),
            )
        )
    return ProbeList(probes)
