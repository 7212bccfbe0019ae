"""Detect and install the command-line tools the installer drives."""

import os
import platform
import subprocess
import tarfile
import tempfile
from pathlib import Path
from typing import Optional

import httpx

from .config import (
    GKE_AUTH_PLUGIN_DOCS,
    GKE_AUTH_PLUGIN_ENV,
    HELM_INSTALL_SCRIPT_URL,
    KOTS_INSTALL_URL,
    KREW_RELEASE_URL,
)
from .state import Session
from .utils import InstallError, command_exists, confirm, log, run, run_quiet

AUTH_PLUGIN_EXPORT = f"export {GKE_AUTH_PLUGIN_ENV}=True"
KREW_PATH_EXPORT = 'export PATH="${KREW_ROOT:-$HOME/.krew}/bin:$PATH"'
KOTS_PATH_EXPORT = 'export PATH="$HOME/tools/kots:$PATH"'

ARCH_ALIASES = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
}


def download(url: str) -> bytes:
    """Fetch an installer script or archive."""
    try:
        response = httpx.get(url, follow_redirects=True, timeout=120)
        response.raise_for_status()
    except httpx.HTTPError as e:
        raise InstallError(f"Failed to download {url}: {e}")
    return response.content


def add_to_profiles(line: str, marker: str, home: Optional[Path] = None) -> list[Path]:
    """Append an export line to the shell profiles that lack it.

    ~/.bash_profile is always written; ~/.zshrc only when it exists.

    Returns:
        Profiles that were changed
    """
    home = home or Path.home()
    changed = []
    for profile, required in ((home / ".bash_profile", True), (home / ".zshrc", False)):
        if not profile.exists() and not required:
            continue
        content = profile.read_text(encoding="utf-8") if profile.exists() else ""
        if marker in content:
            continue
        with profile.open("a", encoding="utf-8") as f:
            if content and not content.endswith("\n"):
                f.write("\n")
            f.write(line + "\n")
        log(f"Added {marker} to {profile}")
        changed.append(profile)
    return changed


def prepend_path(directory: Path) -> None:
    """Make a freshly installed tool visible to this process."""
    os.environ["PATH"] = f"{directory}{os.pathsep}{os.environ.get('PATH', '')}"


def krew_asset_name() -> str:
    system = platform.system().lower()
    machine = platform.machine().lower()
    if machine.startswith("arm") and machine not in ARCH_ALIASES:
        arch = "arm"
    else:
        arch = ARCH_ALIASES.get(machine, machine)
    return f"krew-{system}_{arch}"


def ensure_gcloud() -> None:
    if not command_exists("gcloud"):
        raise InstallError(
            "Google Cloud CLI is not installed. "
            "Please install it from https://cloud.google.com/sdk/docs/install"
        )
    log("✓ Google Cloud CLI is installed.")
    log("Updating gcloud components...")
    success, output = run_quiet(["gcloud", "components", "update", "--quiet"])
    if not success:
        log(f"gcloud components update failed: {output.strip()}", "warning")


def ensure_terraform() -> None:
    if not command_exists("terraform"):
        raise InstallError(
            "Terraform is not installed. "
            "Please install it from https://developer.hashicorp.com/terraform/install"
        )
    log("✓ Terraform is installed.")


def ensure_gke_auth_plugin() -> None:
    if command_exists("gke-gcloud-auth-plugin"):
        log("✓ GKE auth plugin is installed.")
        return

    log("GKE auth plugin is not installed. This is required for kubectl to work with GKE.", "warning")
    if not confirm("Would you like to install the GKE auth plugin now?"):
        raise InstallError(
            "GKE auth plugin is required for this script to work. "
            f"Please install it manually: {GKE_AUTH_PLUGIN_DOCS}"
        )

    log("Installing GKE auth plugin...")
    run(["gcloud", "components", "install", "gke-gcloud-auth-plugin", "--quiet"], check=False)
    if not command_exists("gke-gcloud-auth-plugin"):
        raise InstallError(
            f"Failed to install GKE auth plugin. Please install it manually: {GKE_AUTH_PLUGIN_DOCS}"
        )
    log("GKE auth plugin installed successfully.")
    log("Configuring kubectl to use the GKE auth plugin...")
    os.environ[GKE_AUTH_PLUGIN_ENV] = "True"
    add_to_profiles(AUTH_PLUGIN_EXPORT, AUTH_PLUGIN_EXPORT)


def ensure_kubectl() -> None:
    if command_exists("kubectl"):
        log("✓ kubectl is installed.")
        return

    log("kubectl is not installed. Installing it now...", "warning")
    run(["gcloud", "components", "install", "kubectl", "--quiet"], check=False)
    if not command_exists("kubectl"):
        raise InstallError("Failed to install kubectl. Please install it manually.")


def ensure_helm() -> None:
    if command_exists("helm"):
        log("✓ Helm is installed.")
        return

    log("Helm is not installed.", "warning")
    if not confirm("Would you like to install it now?"):
        raise InstallError(
            "Helm is required for this script to work. "
            "Please install it manually: https://helm.sh/docs/intro/install/"
        )

    if command_exists("brew"):
        run(["brew", "install", "helm"], check=False)
    else:
        script = download(HELM_INSTALL_SCRIPT_URL).decode()
        run(["bash"], input=script, check=False)

    if not command_exists("helm"):
        raise InstallError(
            "Failed to install Helm. Please install it manually: https://helm.sh/docs/intro/install/"
        )


def ensure_krew() -> None:
    if command_exists("kubectl-krew"):
        log("✓ kubectl-krew is installed.")
        return

    log("Krew plugin manager is not installed. Installing it now...", "warning")
    name = krew_asset_name()
    archive = download(KREW_RELEASE_URL.format(name=name))
    with tempfile.TemporaryDirectory() as tmp:
        archive_path = Path(tmp) / f"{name}.tar.gz"
        archive_path.write_bytes(archive)
        try:
            with tarfile.open(archive_path, "r:gz") as tar:
                tar.extractall(tmp, filter="data")
        except tarfile.TarError as e:
            raise InstallError(f"Failed to extract {archive_path.name}: {e}")
        try:
            run([str(Path(tmp) / name), "install", "krew"])
        except (subprocess.CalledProcessError, FileNotFoundError) as e:
            log(f"Krew installation failed: {e}", "warning")

    krew_root = Path(os.environ.get("KREW_ROOT", Path.home() / ".krew"))
    prepend_path(krew_root / "bin")
    log("Please add the following to your shell configuration file and restart your terminal:", "warning")
    log(KREW_PATH_EXPORT, "warning")
    add_to_profiles(KREW_PATH_EXPORT, "KREW_ROOT")


def ensure_kots() -> None:
    log("Checking for KOTS CLI (Kubernetes Off-The-Shelf Software)...")
    if command_exists("kubectl-kots"):
        log("✓ KOTS CLI is installed.")
        _, version = run_quiet(["kubectl", "kots", "version"])
        if version.strip():
            log(f"KOTS version: {version.strip().splitlines()[0]}")
        return

    log("KOTS CLI is not installed.", "warning")
    log("KOTS is a deployment platform for Kubernetes applications, required for Mission Control installation.")
    log("It provides a web-based admin console to manage Mission Control deployment and updates.")
    if not confirm("Would you like to install KOTS CLI now?"):
        raise InstallError(
            "KOTS CLI is required for Mission Control installation. "
            f"Please install it manually: curl {KOTS_INSTALL_URL} | bash"
        )

    log("Installing KOTS CLI...")
    install_dir = Path.home() / "tools" / "kots"
    install_dir.mkdir(parents=True, exist_ok=True)
    script = download(KOTS_INSTALL_URL).decode()
    result = run(
        ["bash"],
        input=script,
        check=False,
        env={**os.environ, "REPL_INSTALL_PATH": str(install_dir)},
    )
    if result.returncode != 0:
        log("Trying alternative installation method...")
        run(["bash"], input=script, check=False)

    prepend_path(install_dir)
    if not command_exists("kubectl-kots"):
        raise InstallError(
            f"Failed to install KOTS CLI. You can install it manually with: curl {KOTS_INSTALL_URL} | bash"
        )
    log("KOTS CLI installed successfully.")
    add_to_profiles(KOTS_PATH_EXPORT, "tools/kots")


def check_prerequisites(session: Session) -> None:
    """Check that required tools are installed, offering to install the missing ones."""
    log("Checking prerequisites...")

    ensure_gcloud()
    ensure_terraform()
    ensure_gke_auth_plugin()
    ensure_kubectl()
    ensure_helm()
    ensure_krew()
    ensure_kots()

    os.environ[GKE_AUTH_PLUGIN_ENV] = "True"
    log("All prerequisites are met or installed.")
    session.state.save("prerequisites_checked")
