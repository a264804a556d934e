"""Kubernetes client connection for the cluster store."""

import base64
import logging
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING, Optional

from kubernetes import config
from kubernetes.client import ApiClient, VersionApi
from kubernetes.client.exceptions import ApiException
from kubernetes.dynamic import DynamicClient

if TYPE_CHECKING:
    from ..config import Settings

logger = logging.getLogger(__name__)


class ClusterConnection:
    """Represents a connection to a single Kubernetes cluster."""

    def __init__(
        self,
        kubeconfig_data: Optional[str] = None,
        kubeconfig_path: Optional[str] = None,
        context: Optional[str] = None,
    ):
        """
        Initialize cluster connection.

        Args:
            kubeconfig_data: Base64 encoded kubeconfig
            kubeconfig_path: Path to a kubeconfig file
            context: Kubeconfig context to use

        Raises:
            ValueError: If kubeconfig is invalid
        """
        self.kubeconfig_data = kubeconfig_data
        self.kubeconfig_path = kubeconfig_path
        self.context = context
        self._api_client: Optional[ApiClient] = None
        self._dynamic: Optional[DynamicClient] = None
        self._temp_kubeconfig: Optional[Path] = None

        self._initialize_client()

    @classmethod
    def from_settings(cls, settings: "Settings") -> "ClusterConnection":
        """Connect using the kubeconfig path and context from settings."""
        return cls(kubeconfig_path=settings.kubeconfig_path, context=settings.kube_context)

    def _initialize_client(self):
        """Initialize Kubernetes API client."""
        try:
            if self.kubeconfig_data:
                kubeconfig_content = base64.b64decode(self.kubeconfig_data)
                with tempfile.NamedTemporaryFile(mode="wb", delete=False) as f:
                    f.write(kubeconfig_content)
                    self._temp_kubeconfig = Path(f.name)
                config.load_kube_config(
                    config_file=str(self._temp_kubeconfig),
                    context=self.context,
                )
            elif self.kubeconfig_path:
                config.load_kube_config(
                    config_file=self.kubeconfig_path,
                    context=self.context,
                )
            else:
                config.load_incluster_config()

            self._api_client = ApiClient()
            self._dynamic = DynamicClient(self._api_client)

        except Exception as e:
            raise ValueError(f"Failed to initialize cluster connection: {e}") from e

        logger.info(f"Connected to cluster (context={self.context or 'default'})")

    @property
    def api_client(self) -> ApiClient:
        """Get ApiClient instance."""
        if not self._api_client:
            raise RuntimeError("Cluster connection not initialized")
        return self._api_client

    @property
    def dynamic(self) -> DynamicClient:
        """Get the dynamic client used for arbitrary resource kinds."""
        if not self._dynamic:
            raise RuntimeError("Cluster connection not initialized")
        return self._dynamic

    def is_healthy(self) -> bool:
        """
        Check if cluster connection is healthy.

        Returns:
            True if the API server answers a version request
        """
        try:
            VersionApi(self.api_client).get_code()
            return True
        except ApiException:
            return False

    def close(self):
        """Close the cluster connection and clean up resources."""
        if self._api_client:
            self._api_client.close()
            self._api_client = None
        self._dynamic = None

        if self._temp_kubeconfig and self._temp_kubeconfig.exists():
            self._temp_kubeconfig.unlink()
            self._temp_kubeconfig = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
