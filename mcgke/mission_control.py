"""Mission Control installation through KOTS and its UI LoadBalancer."""

import os
import subprocess
from pathlib import Path
from typing import Any, Optional

import yaml
from kubernetes.client.rest import ApiException

from .config import (
    DEFAULT_MC_NAMESPACE,
    GKE_AUTH_PLUGIN_ENV,
    KOTS_APP,
    KOTS_RETRY_WAIT_DURATION,
    KOTS_WAIT_DURATION,
    KOTSADM_SELECTOR,
    MC_UI_DEPLOYMENT,
    MC_UI_SERVICE,
    MC_UI_SERVICE_FILE,
)
from .state import MC_NAMESPACE, Session
from .utils import InstallError, StepSkipped, ask, choose, confirm, echo, log, poll, run


def kots_install_cmd(namespace: str, license_file: Optional[Path], wait_duration: str) -> list[str]:
    cmd = ["kubectl", "kots", "install", KOTS_APP, "--namespace", namespace]
    if license_file:
        cmd.append(f"--license-file={license_file}")
    cmd.extend(["--wait-duration", wait_duration])
    return cmd


def has_mission_control_deployment(session: Session, namespace: str) -> bool:
    return any(KOTS_APP in name for name in session.kube.list_deployments(namespace))


def has_kotsadm_pods(session: Session, namespace: str) -> bool:
    return bool(session.kube.list_pods(namespace, KOTSADM_SELECTOR))


def print_admin_hints(namespace: str) -> None:
    log("To access the KOTS Admin Console again later, run:")
    log(f"kubectl kots admin-console --namespace {namespace}")
    log("If you need to reset the Admin Console password:")
    log(f"kubectl kots reset-password -n {namespace}")


def ask_license_file() -> Optional[Path]:
    log("Mission Control requires a license file for installation.")
    if not confirm("Do you have a license file?"):
        log("No license file provided. You'll need to upload it in the Admin Console.")
        return None

    path = Path(ask("Enter the path to your license file")).expanduser()
    if path.is_file():
        log(f"Using license file: {path}")
        return path
    log(f"License file not found: {path}", "warning")
    log("Will proceed without license file. You'll need to upload it in the Admin Console.", "warning")
    return None


def _kots_install(namespace: str, license_file: Optional[Path], wait_duration: str) -> bool:
    try:
        run(kots_install_cmd(namespace, license_file, wait_duration))
        return True
    except (subprocess.CalledProcessError, FileNotFoundError):
        return False


def _ensure_namespace(session: Session, namespace: str) -> None:
    if session.kube.namespace_exists(namespace):
        log(f"Using existing namespace: {namespace}")
        return
    log(f"Namespace {namespace} doesn't exist. Creating it...")
    try:
        session.kube.create_namespace(namespace)
    except ApiException as e:
        raise InstallError(
            f"Failed to create namespace {namespace}. Check your permissions and try again. ({e.reason})"
        )
    log(f"Namespace {namespace} created successfully.")


def install_mission_control(session: Session) -> None:
    """Install Mission Control with `kubectl kots install`."""
    log("Installing Mission Control...")
    os.environ[GKE_AUTH_PLUGIN_ENV] = "True"

    namespace = ask("Enter the namespace for Mission Control installation", DEFAULT_MC_NAMESPACE)
    namespace = namespace or DEFAULT_MC_NAMESPACE
    _ensure_namespace(session, namespace)

    if has_kotsadm_pods(session, namespace):
        log(f"Found existing KOTS admin pods in namespace {namespace}.")
        if has_mission_control_deployment(session, namespace):
            log(f"Found existing Mission Control deployments in namespace {namespace}.")
            log("Would you like to:")
            choice = choose(
                "Enter your choice",
                [
                    "Continue with existing installation (recommended)",
                    "Reinstall Mission Control (may lose configuration)",
                ],
            )
            if choice != 2:
                log("Using existing installation.")
                log(f"To access the KOTS Admin Console: kubectl kots admin-console --namespace {namespace}")
                session.config.set(MC_NAMESPACE, namespace)
                session.state.save("mission_control_installed")
                return
            log("Reinstalling Mission Control...")
        else:
            log("KOTS is installed, but Mission Control may not be fully deployed.")

    license_file = ask_license_file()

    log(f"Starting Mission Control installation in namespace {namespace}...")
    log("This will open a browser window to the KOTS Admin Console.")
    log("In the console, you'll need to:")
    log("1. Upload your license file (if not provided)")
    log("2. Configure Mission Control settings")
    log("3. Deploy the application")

    if has_kotsadm_pods(session, namespace):
        log("Found existing KOTS admin pods. Removing them to ensure clean installation...")
        session.kube.delete_deployments(namespace, KOTSADM_SELECTOR)
        session.kube.delete_pods(namespace, KOTSADM_SELECTOR)

    if not _kots_install(namespace, license_file, KOTS_WAIT_DURATION):
        log("KOTS installation command returned an error.", "warning")
        log("This might be temporary. You can try accessing the Admin Console with:", "warning")
        log(f"kubectl kots admin-console --namespace {namespace}", "warning")
        if has_kotsadm_pods(session, namespace):
            log("However, KOTS admin pods were found in the namespace.")
            log("The installation might have partially succeeded.")
        else:
            log("No KOTS admin pods were found. The installation likely failed.", "warning")

        if confirm("Would you like to retry the Mission Control installation?"):
            log("Retrying Mission Control installation...")
            if not _kots_install(namespace, license_file, KOTS_RETRY_WAIT_DURATION):
                raise InstallError(
                    "Failed to install Mission Control after retry. Please check the error messages above."
                )
        else:
            log("Continuing without completing Mission Control installation.", "warning")
            log(
                f"You can install it later with: kubectl kots install {KOTS_APP} --namespace {namespace}",
                "warning",
            )

    log("Mission Control installation process initiated.")
    log("The KOTS Admin Console should be open in your browser.")
    log("Please complete the installation steps in the browser, then return here.")
    if confirm("Have you completed the Mission Control installation in the browser?"):
        log("Verifying Mission Control installation...")
        if wait_for_mission_control(session, namespace):
            log("Mission Control deployments found! Installation appears successful.")
        else:
            log("No Mission Control deployments found. The installation might not be complete.", "warning")
            log("You may need to complete the installation steps in the KOTS Admin Console:", "warning")
            log(f"kubectl kots admin-console --namespace {namespace}", "warning")
    else:
        log("You indicated the Mission Control installation is not complete.", "warning")
        log("You need to complete the installation through the KOTS Admin Console.", "warning")
        log(f"You can access it later with: kubectl kots admin-console --namespace {namespace}", "warning")

    print_admin_hints(namespace)
    session.config.set(MC_NAMESPACE, namespace)
    session.state.save("mission_control_installed")


def wait_for_mission_control(session: Session, namespace: str) -> bool:
    """Poll until a Mission Control deployment shows up in the namespace."""
    settings = session.settings
    attempt = 0

    def found() -> bool:
        nonlocal attempt
        if has_mission_control_deployment(session, namespace):
            return True
        attempt += 1
        if attempt <= settings.deployment_poll_attempts:
            log(
                "Waiting for Mission Control deployments to appear "
                f"(attempt {attempt}/{settings.deployment_poll_attempts})..."
            )
        return False

    if poll(found, settings.deployment_poll_interval, attempts=settings.deployment_poll_attempts + 1):
        return True
    log("Mission Control deployments not found after waiting.", "warning")
    log("The installation might not be complete.", "warning")
    return False


def build_ui_service_manifest(namespace: str) -> dict[str, Any]:
    """LoadBalancer service in front of the Mission Control UI pods."""
    return {
        "apiVersion": "v1",
        "kind": "Service",
        "metadata": {
            "name": MC_UI_SERVICE,
            "namespace": namespace,
            "labels": {"created-by": "automation-script"},
        },
        "spec": {
            "selector": {"app": MC_UI_DEPLOYMENT},
            "sessionAffinity": "None",
            "type": "LoadBalancer",
            "ports": [{"protocol": "TCP", "port": 443, "targetPort": 8080}],
        },
    }


def write_manifest(path: Path, manifest: dict[str, Any]) -> None:
    with path.open("w", encoding="utf-8") as f:
        yaml.safe_dump(manifest, f, default_flow_style=False, sort_keys=False)


def create_loadbalancer(session: Session) -> None:
    """Expose the Mission Control UI on an external IP."""
    log("Creating LoadBalancer service for Mission Control UI...")
    os.environ[GKE_AUTH_PLUGIN_ENV] = "True"
    kube = session.kube

    namespace = session.config.get(MC_NAMESPACE)
    if namespace:
        log(f"Using namespace from config: {namespace}")
    else:
        log(f"Please enter the namespace where Mission Control was installed (default is {DEFAULT_MC_NAMESPACE}):")
        namespace = ask("Namespace", DEFAULT_MC_NAMESPACE) or DEFAULT_MC_NAMESPACE

    if kube.namespace_exists(namespace):
        log(f"Using existing namespace: {namespace}")
    else:
        log(f"Namespace {namespace} does not exist.", "warning")
        if not confirm(f"Would you like to create the {namespace} namespace?"):
            raise InstallError(
                "Cannot create LoadBalancer without a valid namespace. Please install Mission Control first."
            )
        try:
            kube.create_namespace(namespace)
        except ApiException as e:
            raise InstallError(f"Failed to create namespace {namespace}: {e.reason}")
        log(f"Namespace {namespace} created.")

    log(f"Checking if Mission Control UI is running in namespace {namespace}...")
    deployments = kube.list_deployments(namespace)
    if any(MC_UI_DEPLOYMENT in name for name in deployments):
        log(f"Mission Control UI deployment found in namespace {namespace}.")
    else:
        log(f"Mission Control UI deployment not found in namespace {namespace}.", "warning")
        log("This could mean:")
        log("1. Mission Control installation is not complete")
        log("2. The UI component has a different name")
        log("3. Mission Control was installed in a different namespace")
        log(f"Deployments in namespace {namespace}:")
        for name in deployments or ["(none)"]:
            echo(f"  {name}")
        log("Would you like to:")
        choice = choose(
            "Enter your choice",
            [
                "Create LoadBalancer anyway (might not work until Mission Control is fully installed)",
                "Abort LoadBalancer creation (recommended if Mission Control is not installed)",
            ],
        )
        if choice != 1:
            log("You can create it later after Mission Control is fully installed.")
            raise StepSkipped("Aborting LoadBalancer creation.")
        log("Proceeding with LoadBalancer creation anyway...")

    manifest = build_ui_service_manifest(namespace)
    write_manifest(session.path(MC_UI_SERVICE_FILE), manifest)

    log(f"Creating LoadBalancer service in namespace {namespace}...")
    try:
        kube.apply_service(manifest)
    except ApiException as e:
        raise InstallError(f"Failed to create service {MC_UI_SERVICE}: {e.reason}")

    log("Waiting for LoadBalancer to be provisioned with an external IP...")
    external_ip = kube.wait_for_external_ip(
        MC_UI_SERVICE,
        namespace,
        timeout=session.settings.loadbalancer_timeout,
        interval=session.settings.poll_interval,
    )
    if external_ip:
        log(f"Mission Control UI is now accessible at: https://{external_ip}/")
        log("Note: It may take a few minutes for the IP to become fully accessible.")
    else:
        log("Timed out waiting for external IP.", "warning")
        log("The LoadBalancer service has been created, but hasn't received an external IP yet.", "warning")
        log(
            f"You can check its status later with: kubectl get svc {MC_UI_SERVICE} -n {namespace}",
            "warning",
        )

    session.state.save("loadbalancer_created")
