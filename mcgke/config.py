"""Configuration for the Mission Control installer."""

from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

# Default deployment parameters
DEFAULT_PREFIX = "user-mc-lcm-proj"
DEFAULT_GCP_PROJECT = "gcp-lcm-project"
DEFAULT_GCP_REGION = "us-central1"
DEFAULT_GCP_ZONE = "us-central1-c"
DEFAULT_GCP_NETWORK = "ha-vpc-00"
DEFAULT_MACHINE_TYPE = "e2-standard-4"
DEFAULT_DISK_SIZE = 100
DEFAULT_NODE_COUNT = 2

DEFAULT_MC_NAMESPACE = "mission-control"
DEFAULT_LANGFLOW_NAMESPACE = "langflow"
DEFAULT_HCD_NAME = "hcd"

# kubectl needs this to authenticate against GKE
GKE_AUTH_PLUGIN_ENV = "USE_GKE_GCLOUD_AUTH_PLUGIN"

# APIs the GKE cluster depends on
REQUIRED_APIS = [
    "container.googleapis.com",
    "compute.googleapis.com",
    "iam.googleapis.com",
    "monitoring.googleapis.com",
    "logging.googleapis.com",
    "storage-api.googleapis.com",
]

# cert-manager
JETSTACK_REPO = ("jetstack", "https://charts.jetstack.io")
CERT_MANAGER_RELEASE = "cert-manager"
CERT_MANAGER_CHART = "jetstack/cert-manager"
CERT_MANAGER_VERSION = "v1.13.3"
CERT_MANAGER_NAMESPACE = "cert-manager"
CERT_MANAGER_DEPLOYMENTS = [
    "cert-manager",
    "cert-manager-webhook",
    "cert-manager-cainjector",
]

KREW_PLUGINS = ["minio", "preflight", "support-bundle"]

# Mission Control (KOTS)
KOTS_APP = "mission-control"
KOTS_WAIT_DURATION = "10m"
KOTS_RETRY_WAIT_DURATION = "15m"
KOTSADM_SELECTOR = "app=kotsadm"
MC_UI_DEPLOYMENT = "mission-control-ui"
MC_UI_SERVICE = "mission-control-ui-external"

# HCD
DATA_API_PORT = 8181
HCD_MANIFEST_SUFFIX = "-mission-control-cluster.yaml"
HCD_MANIFEST_PATTERNS = ["*-mission-control-cluster.yaml", "*mccluster.yaml", "hcd*.yaml"]

# Langflow
LANGFLOW_REPO = ("langflow", "https://langflow-ai.github.io/langflow-helm-charts")
LANGFLOW_CHART = "langflow/langflow-ide"
LANGFLOW_RELEASE = "langflow-ide"
LANGFLOW_FRONTEND_SERVICE = "langflow-ide-langflow-frontend"
LANGFLOW_PORT = 8080
LANGFLOW_VALUES_FILE = "values.yaml"

# Files generated in the working directory
MC_UI_SERVICE_FILE = "mission-control-ui-external.yaml"
DATA_API_SERVICE_FILE = "hcd-data-api-svc.yaml"

# Installer downloads
HELM_INSTALL_SCRIPT_URL = "https://raw.githubusercontent.com/helm/helm/main/scripts/get-helm-3"
KREW_RELEASE_URL = "https://github.com/kubernetes-sigs/krew/releases/latest/download/{name}.tar.gz"
KOTS_INSTALL_URL = "https://kots.io/install"
GKE_AUTH_PLUGIN_DOCS = (
    "https://cloud.google.com/kubernetes-engine/docs/how-to/"
    "cluster-access-for-kubectl#install_plugin"
)

# Timeouts (seconds)
TIMEOUT_DEPLOYMENT_READY = 300


class Settings(BaseSettings):
    """Installer settings, overridable with MCGKE_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="MCGKE_",
        case_sensitive=False,
    )

    workdir: Path = Path(".")
    state_file: str = "mc_install_state.env"
    config_file: str = "mc_install_config.env"
    terraform_dir: str = "terraform"
    kubeconfig: Optional[str] = None

    # Polling
    poll_interval: int = 10
    loadbalancer_timeout: int = 300
    api_propagation_delay: int = 30
    deployment_poll_attempts: int = 10
    deployment_poll_interval: int = 30
    terraform_retry_delay: int = 60
    hcd_delete_grace: int = 30

    @property
    def state_path(self) -> Path:
        return self.workdir / self.state_file

    @property
    def config_path(self) -> Path:
        return self.workdir / self.config_file

    @property
    def terraform_path(self) -> Path:
        return self.workdir / self.terraform_dir


def get_package_dir() -> Path:
    """Get the installed package directory."""
    return Path(__file__).resolve().parent


def get_data_dir() -> Path:
    """Get the directory with bundled templates."""
    return get_package_dir() / "data"
