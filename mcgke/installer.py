"""Resumable installation sequence and environment teardown."""

import os
import time
from pathlib import Path
from typing import Callable, NamedTuple

from kubernetes.client.rest import ApiException
from pydantic import ValidationError
from rich.table import Table

from .addons import add_helm_repos, install_prerequisites
from .cluster import configure_kubectl, create_gke_cluster, create_terraform_files, destroy_cluster
from .config import (
    DATA_API_PORT,
    DATA_API_SERVICE_FILE,
    DEFAULT_MC_NAMESPACE,
    GKE_AUTH_PLUGIN_ENV,
    HCD_MANIFEST_SUFFIX,
    MC_UI_SERVICE_FILE,
)
from .gcp import check_project_billing, gcp_authenticate
from .hcd import MCC_GROUP, MCC_PLURAL, MCC_VERSION, install_hcd_cluster
from .mission_control import create_loadbalancer, install_mission_control
from .prereqs import check_prerequisites
from .state import (
    DATA_API_SVC,
    HCD_NAME,
    HCD_PASSWORD,
    HCD_USERNAME,
    MC_NAMESPACE,
    PROJECT_NAMESPACE,
    START,
    STATES,
    DeploymentConfig,
    Session,
)
from .utils import InstallError, StepSkipped, ask, confirm, confirm_delete, console, log

BASIC_PROMPTS = {
    "prefix": "Enter your prefix",
    "gcp_project": "Enter GCP project ID",
    "gcp_region": "Enter GCP region",
    "gcp_zone": "Enter GCP zone",
    "gcp_network": "Enter GCP network",
}

ADVANCED_PROMPTS = {
    "machine_type": "Node machine type",
    "disk_size": "Node disk size in GB",
    "node_count": "Number of nodes",
}


class Step(NamedTuple):
    """One step of the installation and the state labels it can leave behind."""

    title: str
    labels: tuple[str, ...]
    run: Callable[[Session], None]


def deployment_table(title: str, deployment: DeploymentConfig) -> Table:
    table = Table(title=title, show_header=False)
    for name, label in DeploymentConfig.LABELS.items():
        value = str(getattr(deployment, name))
        if name == "disk_size":
            value = f"{value} GB"
        table.add_row(f"[cyan]{label}:[/cyan]", f"[yellow]{value}[/yellow]")
    return table


def load_saved_config(session: Session) -> bool:
    """Offer to reuse the saved deployment parameters.

    Returns:
        True if the saved configuration will be used
    """
    if not session.config.exists():
        return False

    log(f"Found saved configuration file: {session.config.path}")
    if not confirm("Would you like to use this saved configuration?"):
        return False

    try:
        deployment = session.config.load_deployment()
    except InstallError as e:
        log(str(e), "warning")
        return False

    log(f"Loaded configuration from {session.config.path}")
    console.print(deployment_table("Loaded Configuration", deployment))
    if not confirm("Proceed with this configuration?"):
        log("Will proceed with manual configuration instead.")
        return False

    session.use_deployment(deployment)
    session.state.save("config_loaded")
    return True


def setup_config(session: Session) -> None:
    """Prompt for every deployment parameter."""
    log("Setting up configuration...")
    defaults = DeploymentConfig()
    values = {}
    for name, prompt in BASIC_PROMPTS.items():
        default = str(getattr(defaults, name))
        values[name] = ask(prompt, default) or default
    console.print("\n[bold blue]Advanced Configuration (press Enter to use defaults):[/bold blue]")
    for name, prompt in ADVANCED_PROMPTS.items():
        default = str(getattr(defaults, name))
        values[name] = ask(prompt, default) or default

    try:
        deployment = DeploymentConfig(**values)
    except ValidationError as e:
        raise InstallError(f"Invalid configuration: {e}")

    console.print(deployment_table("Configuration Summary", deployment))
    if not confirm("Is this configuration correct?"):
        raise InstallError("Configuration not confirmed. Exiting.")

    if confirm("Would you like to save this configuration for future use?"):
        session.config.save_deployment(deployment)
        log(f"Configuration saved to {session.config.path}")

    session.use_deployment(deployment)
    session.state.save("config_setup")


def configure_deployment(session: Session) -> None:
    if not load_saved_config(session):
        setup_config(session)


INSTALL_SEQUENCE = [
    Step("prerequisites check", ("prerequisites_checked",), check_prerequisites),
    Step("configuration", ("config_loaded", "config_setup"), configure_deployment),
    Step("Helm repositories", ("helm_repos_added",), add_helm_repos),
    Step("GCP authentication", ("gcp_authenticated", "apis_enabled"), gcp_authenticate),
    Step("billing check", ("billing_checked",), check_project_billing),
    Step("Terraform files creation", ("terraform_files_created",), create_terraform_files),
    Step("GKE cluster creation", ("gke_cluster_created",), create_gke_cluster),
    Step("kubectl configuration", ("kubectl_configured",), configure_kubectl),
    Step("prerequisites installation", ("prerequisites_installed",), install_prerequisites),
    Step("Mission Control installation", ("mission_control_installed",), install_mission_control),
]


def pending_steps(current: str) -> list[Step]:
    """Steps that still have to run after the one that saved `current`.

    Unknown labels restart the whole sequence.
    """
    if current == START:
        return list(INSTALL_SEQUENCE)
    for index, step in enumerate(INSTALL_SEQUENCE):
        if current in step.labels:
            return INSTALL_SEQUENCE[index + 1:]
    if current in STATES:
        return []
    return list(INSTALL_SEQUENCE)


def run_optional(step: Callable[[Session], None], session: Session) -> bool:
    """Run a step whose abandonment must not end the installation."""
    try:
        step(session)
        return True
    except StepSkipped as e:
        log(str(e), "warning")
        return False


def start_or_resume_installation(session: Session) -> None:
    """Run the installation from the step after the last saved one."""
    os.environ[GKE_AUTH_PLUGIN_ENV] = "True"
    current = session.state.load()

    if current not in STATES:
        log(f"Unknown state: {current}. Starting from the beginning...", "warning")
        current = START

    steps = pending_steps(current)
    if current == START:
        log("Starting installation from the beginning...")
    elif steps:
        log(f"Resuming from {steps[0].title} step...")
    elif current == "mission_control_installed":
        log("Mission Control is already installed.")
    elif current == "hcd_cluster_initiated":
        log("HCD Cluster is already installed.")

    for step in steps:
        step.run(session)

    if current == "loadbalancer_created":
        log("Installation is complete including LoadBalancer setup.")
    else:
        if current != "hcd_cluster_initiated" and confirm(
            "Would you like to install the HCD Cassandra cluster?"
        ):
            run_optional(install_hcd_cluster, session)
        if confirm("Would you like to create a LoadBalancer service for Mission Control UI?"):
            run_optional(create_loadbalancer, session)

    print_notes(session)


def print_notes(session: Session) -> None:
    config = session.config
    mc_namespace = config.get(MC_NAMESPACE, DEFAULT_MC_NAMESPACE)
    log("Installation complete!")
    log("Notes:")
    log(f"1. To access the KOTS Admin Console again: kubectl kots admin-console --namespace {mc_namespace}")
    log(f"2. To reset the Admin Console password: kubectl kots reset-password -n {mc_namespace}")
    log("3. To tear down the environment: run 'mcgke destroy' or select 'Delete environment' in the menu")

    if not config.has(HCD_USERNAME):
        return
    project_namespace = config.get(PROJECT_NAMESPACE, mc_namespace)
    service = config.get(DATA_API_SVC, "<data-api-service>")
    log("HCD Cluster Notes:")
    log(f"- Access the Data API: http://localhost:{DATA_API_PORT} (after port-forwarding)")
    log(
        f"- Port-forward command: kubectl port-forward svc/{service} -n {project_namespace} "
        f"{DATA_API_PORT}:{DATA_API_PORT}"
    )
    log(f"- Find the Cassandra pods: kubectl get pods -n {project_namespace}")
    log(f"- Username: {config.get(HCD_USERNAME)}")
    log(f"- Password: {config.get(HCD_PASSWORD)}")


def generated_files(session: Session) -> list[Path]:
    """Files the installer writes into the working directory."""
    workdir = session.settings.workdir
    names = [
        DATA_API_SERVICE_FILE,
        f"{DATA_API_SERVICE_FILE}.bak",
        MC_UI_SERVICE_FILE,
    ]
    paths = [workdir / name for name in names]
    paths.extend(sorted(workdir.glob(f"*{HCD_MANIFEST_SUFFIX}")))
    return [path for path in paths if path.exists()]


def delete_environment(session: Session) -> None:
    """Destroy the cluster and everything the installer recorded."""
    log("Preparing to delete the environment...")
    config = session.config
    if not config.exists():
        raise InstallError("Configuration file not found. Cannot delete environment.")

    deployment = session.deployment
    project_namespace = config.get(PROJECT_NAMESPACE)
    hcd_name = config.get(HCD_NAME)

    console.print("\n[bold red]WARNING: This will delete all resources created by this installer, including:[/bold red]")
    console.print(f"- GKE cluster: [yellow]{deployment.cluster_name}[/yellow]")
    console.print(
        "- Mission Control installation in namespace: "
        f"[yellow]{config.get(MC_NAMESPACE, DEFAULT_MC_NAMESPACE)}[/yellow]"
    )
    if project_namespace and hcd_name:
        console.print(f"- HCD cluster: [yellow]{hcd_name}[/yellow] in [yellow]{project_namespace}[/yellow]")
    else:
        console.print("- HCD Cassandra cluster (if installed)")
    console.print(f"- All associated resources in project: [yellow]{deployment.gcp_project}[/yellow]")
    console.print("\n[bold red]This action is irreversible![/bold red]")

    if not confirm_delete("Are you absolutely sure you want to delete the environment?"):
        log("Deletion cancelled.")
        return

    if project_namespace and hcd_name:
        log("Attempting to delete HCD cluster first...")
        try:
            session.kube.delete_custom_object(
                MCC_GROUP, MCC_VERSION, MCC_PLURAL, hcd_name, project_namespace,
                ignore_not_found=True,
            )
        except (ApiException, InstallError) as e:
            log(f"Could not delete HCD cluster {hcd_name}: {e}", "warning")
        else:
            log("Waiting for HCD resources to be deleted...")
            time.sleep(session.settings.hcd_delete_grace)

    log("Deleting environment using Terraform...")
    if not session.settings.terraform_path.is_dir():
        raise InstallError("Terraform directory not found. Cannot delete environment.")
    if not destroy_cluster(session):
        raise InstallError("Failed to delete environment. Please check the error messages above.")
    log("Environment deleted successfully.")

    if session.state.clear():
        log(f"Removed state file: {session.state.path}")
    if config.clear():
        log(f"Removed config file: {config.path}")

    log("Cleaning up generated files...")
    for path in generated_files(session):
        path.unlink()
        log(f"Removed {path.name}")
