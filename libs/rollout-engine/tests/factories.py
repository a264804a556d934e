"""Builders for the documents used across the rollout engine tests."""

import copy

from sentinel_rollout import Document, GroupVersionKind, InMemoryStore
from sentinel_rollout.adapters import NAMESPACED

CONFIGMAP = GroupVersionKind("", "v1", "ConfigMap")


def configmap(name: str, namespace: str = "", **data: str) -> dict:
    """Member ConfigMap as embedded in a phase."""
    obj = {
        "apiVersion": "v1",
        "kind": "ConfigMap",
        "metadata": {"name": name},
        "data": dict(data) or {"key": name},
    }
    if namespace:
        obj["metadata"]["namespace"] = namespace
    return obj


def phase(name: str, *objects: dict, phase_class: str = "") -> dict:
    spec = {"name": name, "objects": [{"object": copy.deepcopy(o)} for o in objects]}
    if phase_class:
        spec["class"] = phase_class
    return spec


def ready_probe(kind: str = "ConfigMap", group: str = "") -> dict:
    """Readiness probe requiring a Ready=True condition on objects of one kind."""
    return {
        "probes": [{"type": "Condition", "condition": {"type": "Ready", "status": "True"}}],
        "selector": {"type": "Kind", "kind": {"group": group, "kind": kind}},
    }


def revision(name: str, phases: list, namespace: str = "default", **spec) -> Document:
    return Document(
        {
            "apiVersion": NAMESPACED.revision.api_version,
            "kind": NAMESPACED.revision.kind,
            "metadata": {"name": name, "namespace": namespace},
            "spec": {"phases": phases, **spec},
        }
    )


def deployment(
    name: str,
    phases: list,
    namespace: str = "default",
    probes: list | None = None,
    **spec,
) -> Document:
    return Document(
        {
            "apiVersion": NAMESPACED.deployment.api_version,
            "kind": NAMESPACED.deployment.kind,
            "metadata": {"name": name, "namespace": namespace},
            "spec": {
                "selector": {"matchLabels": {"app": name}},
                "template": {
                    "metadata": {"labels": {"app": name}},
                    "spec": {"phases": phases, "readinessProbes": probes or []},
                },
                **spec,
            },
        }
    )


async def mark_ready(
    store: InMemoryStore, name: str, namespace: str = "default", ready: bool = True
) -> Document:
    """Report a Ready condition on a live ConfigMap, like its controller would."""
    obj = await store.get(CONFIGMAP, namespace, name)
    obj.status["conditions"] = [{"type": "Ready", "status": "True" if ready else "False"}]
    await store.update_status(obj)
    return obj


def condition(doc: Document, condition_type: str) -> dict | None:
    for c in doc.status.get("conditions") or []:
        if c.get("type") == condition_type:
            return c
    return None
