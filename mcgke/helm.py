"""Helm release management."""

import subprocess
from pathlib import Path
from typing import Optional, Sequence

from .utils import log, run, run_quiet


def add_repo(name: str, url: str, force_update: bool = False) -> bool:
    """Add a Helm chart repository.

    Args:
        name: Local repository name
        url: Repository URL
        force_update: Replace the repository if it already exists

    Returns:
        True if the repository was added
    """
    cmd = ["helm", "repo", "add", name, url]
    if force_update:
        cmd.append("--force-update")
    success, output = run_quiet(cmd)
    if success:
        log(f"Helm repository '{name}' added")
    else:
        log(f"Failed to add Helm repository '{name}': {output.strip()}", "warning")
    return success


def update_repos() -> bool:
    """Refresh all Helm repositories."""
    success, output = run_quiet(["helm", "repo", "update"])
    if not success:
        log(f"Failed to update Helm repositories: {output.strip()}", "warning")
    return success


def is_release_installed(name: str, namespace: str) -> bool:
    """Check if a Helm release is installed.

    Args:
        name: Release name
        namespace: Kubernetes namespace

    Returns:
        True if release is installed
    """
    success, output = run_quiet(["helm", "list", "-n", namespace, "-q", "--filter", f"^{name}$"])
    return success and name in output.split()


def list_releases(namespace: str) -> str:
    """Return the `helm list` table for a namespace."""
    _, output = run_quiet(["helm", "list", "-n", namespace])
    return output


def install_chart(
    release: str,
    chart: str,
    namespace: str,
    version: Optional[str] = None,
    values_file: Optional[Path] = None,
    set_values: Sequence[str] = (),
    create_namespace: bool = False,
    upgrade: bool = False,
) -> bool:
    """Install or upgrade a Helm chart.

    Args:
        release: Release name
        chart: Chart reference (repo/chart)
        namespace: Kubernetes namespace
        version: Chart version
        values_file: Custom values file
        set_values: `key=value` overrides
        create_namespace: Create the namespace if missing
        upgrade: Upgrade an existing release instead of installing

    Returns:
        True if chart was installed/upgraded
    """
    cmd = ["helm", "upgrade" if upgrade else "install", release, chart, "-n", namespace]
    if create_namespace:
        cmd.append("--create-namespace")
    if version:
        cmd.extend(["--version", version])
    if values_file:
        cmd.extend(["-f", str(values_file)])
    for value in set_values:
        cmd.extend(["--set", value])

    log(f"{'Upgrading' if upgrade else 'Installing'} {release}...")
    try:
        run(cmd)
        return True
    except (subprocess.CalledProcessError, FileNotFoundError) as e:
        log(f"Failed to deploy {release}: {e}", "error")
        return False


def uninstall_release(name: str, namespace: str) -> bool:
    """Uninstall a Helm release.

    Args:
        name: Release name
        namespace: Kubernetes namespace

    Returns:
        True if release was uninstalled
    """
    log(f"Uninstalling {name}...")
    try:
        run(["helm", "uninstall", name, "-n", namespace])
        return True
    except (subprocess.CalledProcessError, FileNotFoundError) as e:
        log(f"Failed to uninstall {name}: {e}", "error")
        return False
