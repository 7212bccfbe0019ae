"""Langflow IDE Helm release."""

import shutil
from pathlib import Path
from typing import Optional

from kubernetes.client.rest import ApiException

from . import helm
from .config import (
    DEFAULT_LANGFLOW_NAMESPACE,
    LANGFLOW_CHART,
    LANGFLOW_FRONTEND_SERVICE,
    LANGFLOW_PORT,
    LANGFLOW_RELEASE,
    LANGFLOW_REPO,
    LANGFLOW_VALUES_FILE,
    TIMEOUT_DEPLOYMENT_READY,
    get_data_dir,
)
from .state import LANGFLOW_NAMESPACE, Session
from .utils import (
    InstallError,
    StepSkipped,
    ask,
    choose,
    command_exists,
    confirm,
    confirm_delete,
    console,
    echo,
    log,
    print_table,
)

INSTANCE_SELECTOR = f"app.kubernetes.io/instance={LANGFLOW_RELEASE}"
PORT_FORWARD_HINT = (
    f"kubectl port-forward svc/{LANGFLOW_FRONTEND_SERVICE} -n {{namespace}} "
    f"{LANGFLOW_PORT}:{LANGFLOW_PORT}"
)


def bundled_values() -> Path:
    return get_data_dir() / "langflow-values.yaml"


def write_values(session: Session, overwrite: bool = False) -> Path:
    """Copy the bundled values template into the working directory.

    Args:
        session: Current session
        overwrite: Replace an existing values file

    Returns:
        Path of the values file
    """
    target = session.path(LANGFLOW_VALUES_FILE)
    if target.exists() and not overwrite:
        log(f"{target} already exists, leaving it unchanged.", "warning")
        return target
    shutil.copyfile(bundled_values(), target)
    log(f"Wrote Langflow values to {target}")
    return target


def saved_or_prompted_namespace(session: Session) -> str:
    namespace = session.config.get(LANGFLOW_NAMESPACE)
    if namespace:
        log(f"Found Langflow namespace from config: {namespace}")
        return namespace
    return (
        ask("Enter the namespace where Langflow is installed", DEFAULT_LANGFLOW_NAMESPACE)
        or DEFAULT_LANGFLOW_NAMESPACE
    )


def loadbalancer_service(session: Session, namespace: str) -> Optional[dict]:
    for service in session.kube.list_services(namespace):
        if service["type"] == "LoadBalancer":
            return service
    return None


def report_access(session: Session, namespace: str) -> None:
    """Print how Langflow can be reached."""
    service = loadbalancer_service(session, namespace)
    if service is None:
        log("No LoadBalancer service found. You may need to use port-forwarding:")
        log(PORT_FORWARD_HINT.format(namespace=namespace))
    elif service["external_ip"]:
        log(f"Langflow is accessible at: http://{service['external_ip']}:{LANGFLOW_PORT}")
    else:
        log("LoadBalancer is provisioning. Check external IP with:")
        log(f"kubectl get svc {service['name']} -n {namespace}")


def install_langflow(session: Session) -> None:
    """Install or upgrade the Langflow IDE chart."""
    log("Installing Langflow...")
    if not command_exists("helm"):
        raise InstallError("Helm is required for Langflow installation. Please install Helm first.")

    values_file: Optional[Path] = session.path(LANGFLOW_VALUES_FILE)
    if values_file.is_file():
        log(f"Found {LANGFLOW_VALUES_FILE} file. Using it for installation.")
    else:
        log(f"{LANGFLOW_VALUES_FILE} file not found in current directory.", "warning")
        if not confirm("Do you want to continue with default values?"):
            raise InstallError(
                f"{LANGFLOW_VALUES_FILE} file is required for Langflow installation. "
                "Run 'mcgke langflow values' to create one."
            )
        values_file = None

    namespace = (
        ask("Enter the namespace for Langflow installation", DEFAULT_LANGFLOW_NAMESPACE)
        or DEFAULT_LANGFLOW_NAMESPACE
    )
    kube = session.kube
    if kube.namespace_exists(namespace):
        log(f"Using existing namespace: {namespace}")
    else:
        log(f"Namespace {namespace} doesn't exist. Creating it...")
        try:
            kube.create_namespace(namespace)
        except ApiException as e:
            raise InstallError(f"Failed to create namespace {namespace}: {e.reason}")
        log(f"Namespace {namespace} created successfully.")

    log("Adding Langflow Helm repository...")
    name, url = LANGFLOW_REPO
    helm.add_repo(name, url)
    if not helm.update_repos():
        raise InstallError("Failed to add Langflow Helm repository.")

    upgrade = False
    if helm.is_release_installed(LANGFLOW_RELEASE, namespace):
        log(f"Langflow is already installed in namespace {namespace}.")
        if not confirm("Do you want to upgrade the existing installation?"):
            log("Skipping Langflow installation.")
            return
        upgrade = True
    else:
        log(f"Installing Langflow in namespace {namespace}...")

    if not helm.install_chart(
        LANGFLOW_RELEASE, LANGFLOW_CHART, namespace, values_file=values_file, upgrade=upgrade
    ):
        raise InstallError("Failed to install Langflow. Please check the error messages above.")

    log("Langflow installation completed successfully!")
    log("Waiting for Langflow pods to be ready...")
    if not kube.wait_for_deployments(namespace, INSTANCE_SELECTOR, timeout=TIMEOUT_DEPLOYMENT_READY):
        log("Langflow deployments are not available yet.", "warning")

    log("Langflow installation details:")
    log(f"Namespace: {namespace}")
    log(f"Release name: {LANGFLOW_RELEASE}")
    report_access(session, namespace)
    session.config.set(LANGFLOW_NAMESPACE, namespace)


def delete_langflow(session: Session) -> None:
    """Uninstall the Langflow release and optionally its namespace."""
    log("Deleting Langflow...")
    namespace = saved_or_prompted_namespace(session)
    kube = session.kube

    if not kube.namespace_exists(namespace):
        raise StepSkipped(f"Namespace {namespace} does not exist.")

    if not helm.is_release_installed(LANGFLOW_RELEASE, namespace):
        log(f"Available Helm releases in namespace {namespace}:")
        echo(helm.list_releases(namespace))
        raise StepSkipped(f"Langflow ({LANGFLOW_RELEASE}) is not installed in namespace {namespace}.")

    console.print("\n[bold red]WARNING: This will permanently delete Langflow and all its data![/bold red]")
    echo(f"Namespace: {namespace}")
    echo(f"Release: {LANGFLOW_RELEASE}")
    if not confirm_delete("Are you sure you want to delete Langflow?"):
        log("Langflow deletion cancelled.")
        return

    log("Deleting Langflow Helm release...")
    if not helm.uninstall_release(LANGFLOW_RELEASE, namespace):
        raise InstallError("Failed to delete Langflow. Please check the error messages above.")
    log("Langflow Helm release deleted successfully.")

    if confirm(f"Do you want to delete the namespace {namespace} as well?"):
        try:
            kube.delete_namespace(namespace)
            log(f"Namespace {namespace} deleted successfully.")
        except ApiException:
            log(f"Failed to delete namespace {namespace}.", "warning")

    session.config.unset(LANGFLOW_NAMESPACE)


def check_langflow_status(session: Session) -> None:
    """Show releases, pods and services in the Langflow namespace."""
    log("Checking Langflow status...")
    namespace = saved_or_prompted_namespace(session)
    kube = session.kube
    if not kube.namespace_exists(namespace):
        raise StepSkipped(f"Namespace {namespace} does not exist.")

    log(f"Langflow status in namespace: {namespace}")
    log("Helm releases:")
    echo(helm.list_releases(namespace))
    print_table("Pods", ["NAME", "STATUS", "RESTARTS"], kube.pod_table(namespace))
    print_table(
        "Services",
        ["NAME", "TYPE", "EXTERNAL-IP"],
        [[s["name"], s["type"], s["external_ip"] or "<none>"] for s in kube.list_services(namespace)],
    )

    service = loadbalancer_service(session, namespace)
    if service is None:
        log("No LoadBalancer service found. Use port-forwarding for access:")
        log(PORT_FORWARD_HINT.format(namespace=namespace))
    elif service["external_ip"]:
        log(f"External access: http://{service['external_ip']}:{LANGFLOW_PORT}")
    else:
        log("LoadBalancer is still provisioning external IP...")


def manage_langflow(session: Session) -> None:
    """Langflow sub-menu."""
    log("Langflow Management")
    log("Select an action:")
    choice = choose(
        "Enter your choice",
        ["Install Langflow", "Delete Langflow", "Check Langflow status", "Return to main menu"],
    )
    if choice == 1:
        install_langflow(session)
    elif choice == 2:
        delete_langflow(session)
    elif choice == 3:
        check_langflow_status(session)
    elif choice is None:
        log("Invalid choice. Returning to main menu.", "warning")
