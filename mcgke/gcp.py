"""Google Cloud project checks: authentication, APIs and billing."""

import subprocess
import time

from .config import REQUIRED_APIS
from .state import Session
from .utils import InstallError, confirm, log, run, run_quiet


def gcp_authenticate(session: Session) -> None:
    """Log in with application-default credentials and verify project access."""
    log("Authenticating with Google Cloud...")
    project = session.deployment.gcp_project

    try:
        run(["gcloud", "auth", "application-default", "login"])
    except (subprocess.CalledProcessError, FileNotFoundError) as e:
        raise InstallError(f"gcloud authentication failed: {e}")

    log(f"Verifying access to GCP project: {project}")
    success, _ = run_quiet(["gcloud", "projects", "describe", project])
    if not success:
        raise InstallError(
            f"Failed to access project {project}. Please check your permissions or project ID."
        )

    enable_gcp_apis(session)
    session.state.save("gcp_authenticated")


def enable_gcp_apis(session: Session) -> None:
    """Enable the service APIs the cluster needs."""
    log("Ensuring required GCP APIs are enabled...")
    project = session.deployment.gcp_project

    for api in REQUIRED_APIS:
        log(f"Enabling {api}...")
        success, output = run_quiet(["gcloud", "services", "enable", api, f"--project={project}"])
        if success:
            continue
        log(f"Failed to enable {api}. This might cause issues during deployment.", "warning")
        log(output.strip(), "warning")
        log(
            "Please enable this API manually: "
            f"https://console.developers.google.com/apis/api/{api}/overview?project={project}",
            "warning",
        )
        if not confirm("Do you want to continue anyway?"):
            raise InstallError("Exiting due to API enablement failure.")

    delay = session.settings.api_propagation_delay
    log("All required APIs have been enabled or attempted to enable.")
    log(f"Waiting {delay} seconds for API enablement to propagate...")
    time.sleep(delay)
    session.state.save("apis_enabled")


def check_project_billing(session: Session) -> None:
    """Make sure billing is enabled; GKE refuses to create clusters otherwise."""
    log("Checking project billing status...")
    project = session.deployment.gcp_project

    _, output = run_quiet([
        "gcloud", "billing", "projects", "describe", project,
        "--format=value(billingEnabled)",
    ])
    if output.strip() == "True":
        log(f"Billing is enabled for project {project}.")
    else:
        log(f"Billing is not enabled for project {project}.", "warning")
        log("GKE clusters require billing to be enabled.", "warning")
        log(
            "Please enable billing at: "
            f"https://console.cloud.google.com/billing/linkedaccount?project={project}"
        )
        if not confirm("Have you enabled billing for this project?"):
            raise InstallError("Billing must be enabled to continue. Exiting.")

    session.state.save("billing_checked")
