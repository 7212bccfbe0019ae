"""Cluster add-ons Mission Control depends on."""

import os
import subprocess

from . import helm
from .config import (
    CERT_MANAGER_CHART,
    CERT_MANAGER_DEPLOYMENTS,
    CERT_MANAGER_NAMESPACE,
    CERT_MANAGER_RELEASE,
    CERT_MANAGER_VERSION,
    GKE_AUTH_PLUGIN_ENV,
    JETSTACK_REPO,
    KREW_PLUGINS,
    TIMEOUT_DEPLOYMENT_READY,
)
from .state import Session
from .utils import InstallError, log, run


def add_helm_repos(session: Session) -> None:
    """Register the chart repositories used by the installation."""
    log("Adding required Helm repositories...")
    name, url = JETSTACK_REPO
    helm.add_repo(name, url, force_update=True)
    helm.update_repos()
    session.state.save("helm_repos_added")


def install_krew_plugins() -> None:
    log("Installing kubectl plugins via krew...")
    for plugin in KREW_PLUGINS:
        try:
            run(["kubectl", "krew", "install", plugin])
        except (subprocess.CalledProcessError, FileNotFoundError):
            log(f"Failed to install {plugin} plugin", "warning")


def install_prerequisites(session: Session) -> None:
    """Install cert-manager and the kubectl plugins KOTS uses."""
    log("Installing cert-manager and other prerequisites...")
    os.environ[GKE_AUTH_PLUGIN_ENV] = "True"

    installed = helm.install_chart(
        CERT_MANAGER_RELEASE,
        CERT_MANAGER_CHART,
        CERT_MANAGER_NAMESPACE,
        version=CERT_MANAGER_VERSION,
        set_values=["installCRDs=true"],
        create_namespace=True,
    )
    if not installed:
        raise InstallError("Failed to install cert-manager. Please check the error messages above.")

    install_krew_plugins()

    log("Waiting for cert-manager to be ready...")
    for name in CERT_MANAGER_DEPLOYMENTS:
        if session.kube.wait_for_deployment(
            name, CERT_MANAGER_NAMESPACE, timeout=TIMEOUT_DEPLOYMENT_READY
        ):
            log(f"Deployment {name} is available", "success")
        else:
            log(f"Timed out waiting for deployment {name} to become available", "warning")

    session.state.save("prerequisites_installed")
