"""Terraform configuration and commands for the GKE cluster."""

import json
import subprocess
from pathlib import Path
from typing import Sequence

from .state import DeploymentConfig
from .utils import log, run, run_streamed

CLUSTER_RESOURCE = "google_container_cluster.control_plane"
NODE_POOL_RESOURCE = "google_container_node_pool.primary_nodes"
PLAN_FILE = "tfplan"
STATE_FILE = "terraform.tfstate"

MAIN_TF = """terraform {
  required_providers {
    google = {
      source  = "hashicorp/google"
      version = "~> 4.0"
    }
  }
}

provider "google" {
  project = var.gcp_project
  region  = var.gcp_region
}

resource "google_container_cluster" "control_plane" {
  name               = "${var.prefix}-mc-control-plane"
  location           = var.gcp_zone
  initial_node_count = 1

  # Create a separate node pool
  remove_default_node_pool = true

  network    = var.gcp_network
  subnetwork = var.gcp_network

  workload_identity_config {
    workload_pool = "${var.gcp_project}.svc.id.goog"
  }
}

resource "google_container_node_pool" "primary_nodes" {
  name       = "${var.prefix}-primary-node-pool"
  location   = var.gcp_zone
  cluster    = google_container_cluster.control_plane.name
  node_count = var.node_count

  node_config {
    machine_type = var.machine_type
    disk_size_gb = var.disk_size

    oauth_scopes = [
      "https://www.googleapis.com/auth/logging.write",
      "https://www.googleapis.com/auth/monitoring",
      "https://www.googleapis.com/auth/devstorage.read_only"
    ]

    workload_metadata_config {
      mode = "GKE_METADATA"
    }
  }
}
"""

# (name, description, type)
VARIABLES = [
    ("prefix", "Prefix to use for resource names", "string"),
    ("gcp_project", "GCP project ID", "string"),
    ("gcp_region", "GCP region", "string"),
    ("gcp_zone", "GCP zone", "string"),
    ("gcp_network", "GCP network name", "string"),
    ("machine_type", "Machine type for GKE nodes", "string"),
    ("disk_size", "Disk size for GKE nodes in GB", "number"),
    ("node_count", "Number of nodes in the GKE cluster", "number"),
]


def render_variables() -> str:
    blocks = []
    for name, description, var_type in VARIABLES:
        blocks.append(
            f'variable "{name}" {{\n'
            f'  description = "{description}"\n'
            f"  type        = {var_type}\n"
            f"}}\n"
        )
    return "\n".join(blocks)


def render_tfvars(deployment: DeploymentConfig) -> str:
    """Render terraform.tfvars; numbers stay unquoted."""
    lines = []
    for name, _, var_type in VARIABLES:
        value = getattr(deployment, name)
        rendered = str(value) if var_type == "number" else f'"{value}"'
        lines.append(f"{name:<12} = {rendered}")
    return "\n".join(lines) + "\n"


def write_files(directory: Path, deployment: DeploymentConfig) -> list[Path]:
    """Write main.tf, variables.tf and terraform.tfvars.

    Returns:
        Paths of the written files
    """
    directory.mkdir(parents=True, exist_ok=True)
    files = {
        "main.tf": MAIN_TF,
        "variables.tf": render_variables(),
        "terraform.tfvars": render_tfvars(deployment),
    }
    written = []
    for name, content in files.items():
        path = directory / name
        path.write_text(content, encoding="utf-8")
        written.append(path)
    return written


def state_has_cluster(directory: Path) -> bool:
    """Check whether the local Terraform state already records the cluster."""
    state_path = directory / STATE_FILE
    if not state_path.exists():
        return False
    try:
        state = json.loads(state_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError:
        return False
    return any(
        resource.get("type") == "google_container_cluster"
        for resource in state.get("resources", [])
    )


def is_initialized(directory: Path) -> bool:
    return (directory / ".terraform").is_dir()


def init(directory: Path) -> bool:
    try:
        run(["terraform", "init", "-input=false"], cwd=directory)
        return True
    except (subprocess.CalledProcessError, FileNotFoundError) as e:
        log(f"terraform init failed: {e}", "error")
        return False


def plan(directory: Path, out: str = PLAN_FILE) -> bool:
    log("Creating Terraform plan...")
    try:
        run(["terraform", "plan", f"-out={out}"], cwd=directory)
        return True
    except (subprocess.CalledProcessError, FileNotFoundError) as e:
        log(f"terraform plan failed: {e}", "error")
        return False


def apply(
    directory: Path,
    plan_file: str = "",
    destroy: bool = False,
    targets: Sequence[str] = (),
) -> tuple[bool, str]:
    """Run `terraform apply`, streaming its output.

    Args:
        directory: Terraform working directory
        plan_file: Saved plan to apply (auto-approve is used without one)
        destroy: Destroy instead of create
        targets: Resource addresses to limit the run to

    Returns:
        Tuple of (success, output)
    """
    cmd = ["terraform", "apply"]
    if destroy:
        cmd.append("-destroy")
    cmd.extend(f"-target={target}" for target in targets)
    if plan_file:
        cmd.append(plan_file)
    else:
        cmd.append("-auto-approve")
    returncode, output = run_streamed(cmd, cwd=directory)
    return returncode == 0, output


def destroy_targets(directory: Path, targets: Sequence[str]) -> bool:
    """Destroy resources one target at a time, in the given order."""
    for target in targets:
        success, _ = apply(directory, destroy=True, targets=[target])
        if not success:
            log(f"Failed to destroy {target}", "warning")
            return False
    return True
