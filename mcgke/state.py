"""Installation progress and deployment parameters.

Both are flat KEY=value files in the working directory so they can still be
sourced by a shell:

- the state file holds a single ``CURRENT_STATE`` label naming the last
  completed step,
- the config file holds the deployment parameters plus values recorded by
  later steps (namespaces, service names, credentials).
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import ClassVar, Mapping, Optional

from dotenv import dotenv_values, set_key, unset_key
from pydantic import BaseModel, PositiveInt, ValidationError

from .config import (
    DEFAULT_DISK_SIZE,
    DEFAULT_GCP_NETWORK,
    DEFAULT_GCP_PROJECT,
    DEFAULT_GCP_REGION,
    DEFAULT_GCP_ZONE,
    DEFAULT_MACHINE_TYPE,
    DEFAULT_NODE_COUNT,
    DEFAULT_PREFIX,
    Settings,
)
from .k8s_client import KubeClient
from .utils import InstallError, log

START = "start"

# Labels in the order the installation produces them
STATES = [
    START,
    "prerequisites_checked",
    "config_loaded",
    "config_setup",
    "helm_repos_added",
    "apis_enabled",
    "gcp_authenticated",
    "billing_checked",
    "terraform_files_created",
    "gke_cluster_created",
    "kubectl_configured",
    "prerequisites_installed",
    "mission_control_installed",
    "hcd_cluster_initiated",
    "loadbalancer_created",
]

# Keys recorded in the config file after the initial setup
MC_NAMESPACE = "MC_NAMESPACE"
PROJECT_NAMESPACE = "PROJECT_NAMESPACE"
HCD_NAME = "HCD_NAME"
DATA_API_SVC = "DATA_API_SVC"
DATA_API_URL = "DATA_API_URL"
HCD_USERNAME = "HCD_USERNAME"
HCD_PASSWORD = "HCD_PASSWORD"
LANGFLOW_NAMESPACE = "LANGFLOW_NAMESPACE"


class DeploymentConfig(BaseModel):
    """User-supplied parameters for the GKE cluster."""

    prefix: str = DEFAULT_PREFIX
    gcp_project: str = DEFAULT_GCP_PROJECT
    gcp_region: str = DEFAULT_GCP_REGION
    gcp_zone: str = DEFAULT_GCP_ZONE
    gcp_network: str = DEFAULT_GCP_NETWORK
    machine_type: str = DEFAULT_MACHINE_TYPE
    disk_size: PositiveInt = DEFAULT_DISK_SIZE
    node_count: PositiveInt = DEFAULT_NODE_COUNT

    ENV_KEYS: ClassVar[dict[str, str]] = {
        "prefix": "PREFIX",
        "gcp_project": "GCP_PROJECT",
        "gcp_region": "GCP_REGION",
        "gcp_zone": "GCP_ZONE",
        "gcp_network": "GCP_NETWORK",
        "machine_type": "MACHINE_TYPE",
        "disk_size": "DISK_SIZE",
        "node_count": "NODE_COUNT",
    }

    LABELS: ClassVar[dict[str, str]] = {
        "prefix": "Prefix",
        "gcp_project": "GCP Project",
        "gcp_region": "GCP Region",
        "gcp_zone": "GCP Zone",
        "gcp_network": "GCP Network",
        "machine_type": "Machine Type",
        "disk_size": "Disk Size (GB)",
        "node_count": "Node Count",
    }

    @property
    def cluster_name(self) -> str:
        return f"{self.prefix}-mc-control-plane"

    def to_env(self) -> dict[str, str]:
        return {key: str(getattr(self, name)) for name, key in self.ENV_KEYS.items()}

    @classmethod
    def from_env(cls, values: Mapping[str, Optional[str]]) -> "DeploymentConfig":
        """Build from config file values, using defaults for missing keys."""
        data = {
            name: values[key]
            for name, key in cls.ENV_KEYS.items()
            if values.get(key)
        }
        return cls(**data)


class StateStore:
    """Last completed installation step."""

    KEY = "CURRENT_STATE"

    def __init__(self, path: Path) -> None:
        self.path = path

    def exists(self) -> bool:
        return self.path.exists()

    def load(self) -> str:
        if not self.path.exists():
            return START
        return dotenv_values(self.path, interpolate=False).get(self.KEY) or START

    def save(self, label: str) -> None:
        if label not in STATES:
            raise ValueError(f"Unknown installation state: {label}")
        self.path.write_text(f"{self.KEY}={label}\n", encoding="utf-8")
        log(f"Current state saved: {label}")

    def clear(self) -> bool:
        if not self.path.exists():
            return False
        self.path.unlink()
        return True


class ConfigStore:
    """Deployment parameters and recorded values."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def exists(self) -> bool:
        return self.path.exists()

    def load(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        return {
            key: value
            for key, value in dotenv_values(self.path, interpolate=False).items()
            if value is not None
        }

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return self.load().get(key) or default

    def has(self, key: str) -> bool:
        return bool(self.load().get(key))

    def set(self, key: str, value: str) -> None:
        """Record a value, replacing any previous value for the key."""
        self.path.touch(exist_ok=True)
        set_key(self.path, key, str(value), quote_mode="always")

    def unset(self, key: str) -> None:
        if self.has(key):
            unset_key(self.path, key)

    def load_deployment(self) -> DeploymentConfig:
        try:
            return DeploymentConfig.from_env(self.load())
        except ValidationError as e:
            raise InstallError(f"Invalid configuration in {self.path}: {e}")

    def save_deployment(self, deployment: DeploymentConfig) -> None:
        for key, value in deployment.to_env().items():
            self.set(key, value)

    def clear(self) -> bool:
        if not self.path.exists():
            return False
        self.path.unlink()
        return True


@dataclass
class Session:
    """Everything a step needs: settings, persisted state and cluster access."""

    settings: Settings
    state: StateStore
    config: ConfigStore
    _kube: Optional[KubeClient] = field(default=None, repr=False)
    _deployment: Optional[DeploymentConfig] = field(default=None, repr=False)

    @classmethod
    def create(cls, settings: Optional[Settings] = None) -> "Session":
        settings = settings or Settings()
        return cls(
            settings=settings,
            state=StateStore(settings.state_path),
            config=ConfigStore(settings.config_path),
        )

    @property
    def kube(self) -> KubeClient:
        """Kubernetes client, created on first use."""
        if self._kube is None:
            self._kube = KubeClient(self.settings.kubeconfig)
        return self._kube

    def reset_kube(self) -> None:
        """Drop the client so the next use picks up fresh credentials."""
        self._kube = None

    def path(self, name: str) -> Path:
        return self.settings.workdir / name

    @property
    def deployment(self) -> DeploymentConfig:
        """Parameters confirmed in this run, else those in the config file."""
        if self._deployment is not None:
            return self._deployment
        return self.config.load_deployment()

    def use_deployment(self, deployment: DeploymentConfig) -> None:
        self._deployment = deployment
