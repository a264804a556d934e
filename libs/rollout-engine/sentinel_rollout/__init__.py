"""Sentinel Rollout Engine - Phased rollout of object sets with revision history."""

from .adapters import CLUSTER, NAMESPACED, DeploymentAdapter, PhaseObjectAdapter, RevisionAdapter, RevisionKinds
from .applier import ObjectApplier
from .config import Settings, get_settings
from .deployments import DeploymentController
from .document import Document, GroupKind, GroupVersionKind, ObjectKey
from .equality import deep_derivative
from .errors import (
    AlreadyExistsError,
    ConflictError,
    MalformedObjectError,
    NotFoundError,
    RolloutError,
    StoreError,
    TemplateError,
)
from .hashing import compute_hash
from .manager import ControllerManager
from .models import (
    LifecycleState,
    ObjectPhase,
    ObjectSetProbe,
    ObjectSetTemplate,
    ObjectSetTemplateSpec,
    PausedObject,
)
from .phase_objects import RevisionPhaseController
from .phases import PhaseReconciler, teardown_phase
from .probing import Probe, parse_probes
from .reconcile import Request, Result
from .revisions import RevisionController
from .store import ClusterConnection, ClusterStore, InMemoryStore, KubernetesStore
from .watcher import WatchMultiplexer
from .workqueue import WorkQueue

__version__ = "0.1.0"

__all__ = [
    # Controllers
    "ControllerManager",
    "DeploymentController",
    "RevisionController",
    "RevisionPhaseController",
    "Result",
    "Request",
    # Building blocks
    "ObjectApplier",
    "PhaseReconciler",
    "teardown_phase",
    "WatchMultiplexer",
    "WorkQueue",
    "Probe",
    "parse_probes",
    "compute_hash",
    "deep_derivative",
    # Kinds and adapters
    "RevisionKinds",
    "NAMESPACED",
    "CLUSTER",
    "DeploymentAdapter",
    "RevisionAdapter",
    "PhaseObjectAdapter",
    # Stores
    "ClusterStore",
    "InMemoryStore",
    "KubernetesStore",
    "ClusterConnection",
    # Documents and models
    "Document",
    "GroupKind",
    "GroupVersionKind",
    "ObjectKey",
    "LifecycleState",
    "ObjectPhase",
    "ObjectSetProbe",
    "ObjectSetTemplate",
    "ObjectSetTemplateSpec",
    "PausedObject",
    # Configuration
    "Settings",
    "get_settings",
    # Errors
    "RolloutError",
    "StoreError",
    "NotFoundError",
    "AlreadyExistsError",
    "ConflictError",
    "MalformedObjectError",
    "TemplateError",
]
