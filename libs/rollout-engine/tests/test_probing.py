"""Tests for readiness probes."""

from sentinel_rollout import Document, ObjectSetProbe, parse_probes
from sentinel_rollout.probing import ConditionProbe, FieldsEqualProbe, KindSelector, ProbeList
from sentinel_rollout.document import GroupKind


def deployment_doc(generation=1, conditions=None, status=None) -> Document:
    obj = {
        "apiVersion": "apps/v1",
        "kind": "Deployment",
        "metadata": {"name": "web", "namespace": "default", "generation": generation},
        "spec": {"replicas": 3},
        "status": status if status is not None else {},
    }
    if conditions is not None:
        obj["status"]["conditions"] = conditions
    return Document(obj)


class TestConditionProbe:
    """Test the condition probe."""

    def test_condition_true(self):
        """Test success when the condition has the wanted status."""
        doc = deployment_doc(conditions=[{"type": "Available", "status": "True"}])

        assert ConditionProbe("Available").probe(doc) == (True, "")

    def test_condition_wrong_status(self):
        """Test failure message on a mismatching status."""
        doc = deployment_doc(conditions=[{"type": "Available", "status": "False"}])

        success, message = ConditionProbe("Available").probe(doc)

        assert success is False
        assert message == 'condition "Available" == "False", want "True"'

    def test_condition_missing(self):
        """Test failure when the condition is absent."""
        doc = deployment_doc(conditions=[{"type": "Progressing", "status": "True"}])

        assert ConditionProbe("Available").probe(doc) == (False, 'missing condition "Available"')

    def test_conditions_list_missing(self):
        """Test failure when the object reports no conditions at all."""
        assert ConditionProbe("Available").probe(deployment_doc()) == (
            False,
            "missing .status.conditions",
        )

    def test_condition_outdated(self):
        """Test that a condition observed at an old generation fails."""
        doc = deployment_doc(
            generation=3,
            conditions=[{"type": "Available", "status": "True", "observedGeneration": 2}],
        )

        assert ConditionProbe("Available").probe(doc) == (False, 'condition "Available" outdated')

    def test_condition_current_generation(self):
        """Test that a condition observed at the current generation passes."""
        doc = deployment_doc(
            generation=3,
            conditions=[{"type": "Available", "status": "True", "observedGeneration": 3}],
        )

        assert ConditionProbe("Available").probe(doc)[0] is True


class TestFieldsEqualProbe:
    """Test the fields-equal probe."""

    def test_equal_fields(self):
        """Test success when both fields hold the same value."""
        doc = deployment_doc(status={"updatedReplicas": 3})

        assert FieldsEqualProbe(".spec.replicas", ".status.updatedReplicas").probe(doc) == (True, "")

    def test_different_fields(self):
        """Test failure when the values differ."""
        doc = deployment_doc(status={"updatedReplicas": 1})

        success, message = FieldsEqualProbe(".spec.replicas", ".status.updatedReplicas").probe(doc)

        assert success is False
        assert message == '".spec.replicas" == ".status.updatedReplicas": 3 != 1'

    def test_types_are_not_mixed(self):
        """Test that a bool never equals a number and an int never equals a float."""
        probe = FieldsEqualProbe(".spec.value", ".status.value")

        def doc(spec_value, status_value):
            return Document(
                {
                    "apiVersion": "v1",
                    "kind": "ConfigMap",
                    "metadata": {"name": "cfg"},
                    "spec": {"value": spec_value},
                    "status": {"value": status_value},
                }
            )

        assert probe.probe(doc(True, 1))[0] is False
        assert probe.probe(doc(1, 1.0))[0] is False
        assert probe.probe(doc({"a": [1, "x"]}, {"a": [1, "x"]})) == (True, "")

    def test_missing_field(self):
        """Test failure when a field is missing."""
        success, message = FieldsEqualProbe(".spec.replicas", ".status.updatedReplicas").probe(
            deployment_doc()
        )

        assert success is False
        assert message == '".status.updatedReplicas" missing'

    def test_outdated_status(self):
        """Test that a stale status fails before fields are compared."""
        doc = deployment_doc(generation=2, status={"observedGeneration": 1, "updatedReplicas": 3})

        assert FieldsEqualProbe(".spec.replicas", ".status.updatedReplicas").probe(doc) == (
            False,
            "status outdated",
        )


class TestKindSelector:
    """Test kind scoped probes."""

    def test_other_kind_passes_vacuously(self):
        """Test that objects of another kind are not probed."""
        probe = KindSelector(ConditionProbe("Ready"), GroupKind("", "ConfigMap"))

        assert probe.probe(deployment_doc()) == (True, "")

    def test_matching_kind_is_probed(self):
        """Test that objects of the selected kind are probed."""
        probe = KindSelector(ConditionProbe("Available"), GroupKind("apps", "Deployment"))

        assert probe.probe(deployment_doc())[0] is False


class TestProbeList:
    """Test probe combination."""

    def test_empty_list_passes(self):
        """Test that no probes means ready."""
        assert ProbeList().probe(deployment_doc()) == (True, "")

    def test_messages_are_joined(self):
        """Test that every failure is reported."""
        probe = ProbeList([ConditionProbe("Available"), ConditionProbe("Ready")])

        success, message = probe.probe(deployment_doc(conditions=[]))

        assert success is False
        assert message == 'missing condition "Available", missing condition "Ready"'


class TestParseProbes:
    """Test building probes from readiness probe specs."""

    def test_parse(self):
        """Test that specs become kind scoped probes."""
        specs = [
            ObjectSetProbe.model_validate(
                {
                    "probes": [
                        {"type": "Condition", "condition": {"type": "Available", "status": "True"}},
                        {
                            "type": "FieldsEqual",
                            "fieldsEqual": {
                                "fieldA": ".spec.replicas",
                                "fieldB": ".status.updatedReplicas",
                            },
                        },
                    ],
                    "selector": {"type": "Kind", "kind": {"group": "apps", "kind": "Deployment"}},
                }
            )
        ]

        probe = parse_probes(specs)

        ready = deployment_doc(
            conditions=[{"type": "Available", "status": "True"}], status={"updatedReplicas": 3}
        )
        assert probe.probe(ready) == (True, "")

        not_ready = deployment_doc(
            conditions=[{"type": "Available", "status": "True"}], status={"updatedReplicas": 2}
        )
        assert probe.probe(not_ready)[0] is False

    def test_selector_without_kind_is_skipped(self):
        """Test that an incomplete selector adds no probe."""
        specs = [
            ObjectSetProbe.model_validate(
                {
                    "probes": [{"type": "Condition", "condition": {"type": "Available"}}],
                    "selector": {"type": "Kind"},
                }
            )
        ]

        probe = parse_probes(specs)

        assert len(probe) == 0
