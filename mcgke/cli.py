"""CLI interface for the Mission Control GKE installer."""

import logging
from pathlib import Path
from typing import Callable, Optional

import click
from kubernetes.client.rest import ApiException
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table
from urllib3.exceptions import MaxRetryError

from mcgke import __version__
from mcgke import hcd, langflow
from mcgke.config import Settings
from mcgke.installer import delete_environment, start_or_resume_installation
from mcgke.state import START, STATES, Session
from mcgke.utils import InstallError, StepSkipped, choose, console, log, log_header

MENU = [
    ("Start or resume installation", start_or_resume_installation),
    ("Install/Configure HCD Cluster", hcd.install_hcd_cluster),
    ("HCD Post-Installation Setup", hcd.hcd_post_installation),
    ("Delete HCD Cluster", hcd.delete_hcd_cluster),
    ("Manage Langflow (Install/Delete)", langflow.manage_langflow),
    ("Delete environment", delete_environment),
]


def _run(step: Callable[[Session], None], session: Session) -> None:
    """Run a step, turning installer errors into a CLI abort."""
    try:
        step(session)
    except StepSkipped as e:
        log(str(e), "warning")
    except InstallError as e:
        console.print(f"[bold red]✗[/bold red] {escape(str(e))}")
        raise click.Abort()
    except ApiException as e:
        console.print(f"[bold red]✗[/bold red] Kubernetes API error ({e.status}): {escape(str(e.reason))}")
        raise click.Abort()
    except MaxRetryError as e:
        console.print(f"[bold red]✗[/bold red] Cannot reach the Kubernetes cluster: {escape(str(e.reason))}")
        raise click.Abort()


pass_session = click.make_pass_decorator(Session)


@click.group(invoke_without_command=True)
@click.option(
    "--workdir",
    "-w",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Directory holding the state, config and generated files",
)
@click.option("--verbose", "-v", is_flag=True, help="Log every external command")
@click.version_option(version=__version__)
@click.pass_context
def main(ctx: click.Context, workdir: Optional[Path], verbose: bool) -> None:
    """mcgke - Install Mission Control, HCD and Langflow on GKE."""
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(message)s",
            handlers=[RichHandler(console=console, show_path=False)],
        )
    settings = Settings(workdir=workdir) if workdir else Settings()
    ctx.obj = Session.create(settings)
    if ctx.invoked_subcommand is None:
        ctx.invoke(menu)


@main.command()
@pass_session
def menu(session: Session) -> None:
    """Show the interactive main menu."""
    log_header("Mission Control GCP Installation")
    while True:
        options = [title for title, _ in MENU] + ["Exit"]
        choice = choose("Enter your choice", options)
        if choice is None:
            log("Invalid choice. Please select a valid option.", "warning")
            continue
        if choice == len(options):
            log("Exiting.")
            return
        _run(MENU[choice - 1][1], session)
        return


@main.command()
@pass_session
def install(session: Session) -> None:
    """Start or resume the installation."""
    log_header(f"Installing Mission Control on GKE (mcgke v{__version__})")
    _run(start_or_resume_installation, session)


@main.command()
@pass_session
def status(session: Session) -> None:
    """Show saved installation progress and configuration."""
    current = session.state.load()
    done = STATES.index(current) if current in STATES else 0

    table = Table(title="Installation Progress", show_header=False)
    table.add_row("[cyan]State file:[/cyan]", str(session.state.path))
    table.add_row("[cyan]Last completed step:[/cyan]", current)
    table.add_row("[cyan]Progress:[/cyan]", f"{done}/{len(STATES) - 1}")
    console.print(table)

    if not session.config.exists():
        console.print("\n[yellow]No saved configuration.[/yellow]")
        return

    config = Table(title="Saved Configuration")
    config.add_column("Key", style="cyan")
    config.add_column("Value")
    for key, value in session.config.load().items():
        config.add_row(key, "********" if "PASSWORD" in key else value)
    console.print(config)
    try:
        cluster_name = session.deployment.cluster_name
    except InstallError as e:
        console.print(f"[bold red]✗[/bold red] {escape(str(e))}")
        raise click.Abort()
    console.print(f"\nCluster name: [bold]{cluster_name}[/bold]")


@main.command("reset-state")
@click.confirmation_option(prompt="Forget the installation progress and start over next time?")
@pass_session
def reset_state(session: Session) -> None:
    """Forget the saved step so the next install starts from the beginning."""
    if session.state.clear():
        console.print(f"[bold green]✓[/bold green] Removed {session.state.path}")
    else:
        console.print(f"[yellow]No saved state; already at '{START}'.[/yellow]")


@main.command()
@pass_session
def destroy(session: Session) -> None:
    """Delete the GKE cluster and everything installed on it."""
    _run(delete_environment, session)


@main.group("hcd")
def hcd_group() -> None:
    """Manage HCD database clusters."""


@hcd_group.command("install")
@pass_session
def hcd_install(session: Session) -> None:
    """Create an HCD cluster in a Mission Control project."""
    _run(hcd.install_hcd_cluster, session)


@hcd_group.command("delete")
@pass_session
def hcd_delete(session: Session) -> None:
    """Delete an HCD cluster."""
    _run(hcd.delete_hcd_cluster, session)


@hcd_group.command("expose-data-api")
@pass_session
def hcd_expose_data_api(session: Session) -> None:
    """Expose the Data API through a LoadBalancer."""
    _run(hcd.expose_data_api, session)


@hcd_group.command("credentials")
@pass_session
def hcd_credentials(session: Session) -> None:
    """Show the HCD superuser credentials."""
    _run(hcd.get_hcd_credentials, session)


@hcd_group.command("post-install")
@pass_session
def hcd_post_install(session: Session) -> None:
    """Post-installation menu."""
    _run(hcd.hcd_post_installation, session)


@main.group("langflow")
def langflow_group() -> None:
    """Manage the Langflow IDE release."""


@langflow_group.command("install")
@pass_session
def langflow_install(session: Session) -> None:
    """Install or upgrade Langflow."""
    _run(langflow.install_langflow, session)


@langflow_group.command("delete")
@pass_session
def langflow_delete(session: Session) -> None:
    """Uninstall Langflow."""
    _run(langflow.delete_langflow, session)


@langflow_group.command("status")
@pass_session
def langflow_status(session: Session) -> None:
    """Show Langflow releases, pods and services."""
    _run(langflow.check_langflow_status, session)


@langflow_group.command("values")
@click.option("--force", is_flag=True, help="Overwrite an existing values.yaml")
@pass_session
def langflow_values(session: Session, force: bool) -> None:
    """Write the default Langflow values.yaml to the working directory."""
    langflow.write_values(session, overwrite=force)


if __name__ == "__main__":
    main()
