"""GKE cluster lifecycle: Terraform files, provisioning and kubectl access."""

import os
import re
import subprocess
import time

from . import terraform
from .config import GKE_AUTH_PLUGIN_ENV
from .state import Session
from .utils import InstallError, choose, confirm, echo, log, run, run_quiet

NODE_POOL_ERROR = re.compile(r"Error 400.*node_pool", re.IGNORECASE)

TROUBLESHOOTING = [
    "API not fully enabled: Sometimes API enablement takes longer than expected.",
    "Quota limits: Check if you have sufficient quota for the requested resources.",
    "Permission issues: Ensure your account has the necessary permissions.",
    "Node pool configuration: Error may be due to trying to modify immutable attributes.",
]


def create_terraform_files(session: Session) -> None:
    """Generate the Terraform configuration from the saved parameters."""
    log("Creating Terraform files...")
    paths = terraform.write_files(session.settings.terraform_path, session.deployment)
    for path in paths:
        log(f"Wrote {path}")
    session.state.save("terraform_files_created")


def create_gke_cluster(session: Session) -> None:
    """Provision the GKE cluster with Terraform."""
    log("Creating GKE cluster using Terraform...")
    directory = session.settings.terraform_path

    if terraform.state_has_cluster(directory):
        log("Cluster already exists in Terraform state.")
        log("Would you like to:")
        choice = choose(
            "Enter your choice",
            [
                "Skip cluster creation and continue (recommended if cluster exists)",
                "Recreate/update the cluster (may cause errors with existing resources)",
                "Destroy and recreate the cluster (will delete all data)",
            ],
        )
        if choice == 2:
            log("Will attempt to update the cluster...")
        elif choice == 3:
            log("Destroying existing cluster before recreation...")
            terraform.destroy_targets(
                directory, [terraform.NODE_POOL_RESOURCE, terraform.CLUSTER_RESOURCE]
            )
            log("Existing cluster destroyed.")
        else:
            if choice is None:
                log("Invalid choice. Defaulting to skip cluster creation...")
            else:
                log("Skipping cluster creation...")
            session.state.save("gke_cluster_created")
            return

    if not terraform.init(directory):
        raise InstallError("terraform init failed. Please check the error messages above.")
    if not terraform.plan(directory):
        raise InstallError("terraform plan failed. Please check the error messages above.")

    log("Applying Terraform configuration...")
    success, output = terraform.apply(directory, plan_file=terraform.PLAN_FILE)
    if not success:
        _recover_failed_apply(session, output)

    log("GKE cluster created successfully.")
    session.state.save("gke_cluster_created")


def _recover_failed_apply(session: Session, output: str) -> None:
    directory = session.settings.terraform_path
    log("Terraform encountered an error during cluster creation.", "warning")
    log("Common issues and resolutions:")
    for number, hint in enumerate(TROUBLESHOOTING, start=1):
        log(f"{number}. {hint}")

    if NODE_POOL_ERROR.search(output):
        log(
            "Node pool update error detected. This might be due to trying to "
            "modify immutable attributes.",
            "warning",
        )
        if not confirm("Would you like to try recreating the node pool?"):
            raise InstallError("Cluster creation failed. Exiting.")
        log("Recreating node pool...")
        terraform.destroy_targets(directory, [terraform.NODE_POOL_RESOURCE])
        success, _ = terraform.apply(directory)
        if not success:
            raise InstallError("Failed to recreate the node pool. Please check the error messages above.")
        return

    if not confirm("Would you like to retry the cluster creation?"):
        raise InstallError("Cluster creation failed. Exiting.")
    delay = session.settings.terraform_retry_delay
    log(f"Waiting {delay} seconds before retrying...")
    time.sleep(delay)
    log("Retrying cluster creation...")
    success, _ = terraform.apply(directory)
    if not success:
        raise InstallError("Failed to create cluster after retry. Please check the error messages above.")


def configure_kubectl(session: Session) -> None:
    """Fetch cluster credentials into the local kubeconfig."""
    log("Configuring kubectl to use the new cluster...")
    os.environ[GKE_AUTH_PLUGIN_ENV] = "True"
    deployment = session.deployment

    try:
        run([
            "gcloud", "container", "clusters", "get-credentials", deployment.cluster_name,
            "--zone", deployment.gcp_zone,
            "--project", deployment.gcp_project,
        ])
    except (subprocess.CalledProcessError, FileNotFoundError) as e:
        raise InstallError(f"Failed to get credentials for {deployment.cluster_name}: {e}")

    success, context = run_quiet(["kubectl", "config", "current-context"])
    if success:
        echo(context.strip())
    session.reset_kube()
    session.state.save("kubectl_configured")


def destroy_cluster(session: Session) -> bool:
    """Destroy everything in the Terraform state.

    Returns:
        True if terraform destroy succeeded
    """
    directory = session.settings.terraform_path
    if not terraform.is_initialized(directory) and not terraform.init(directory):
        return False
    success, _ = terraform.apply(directory, destroy=True)
    return success
