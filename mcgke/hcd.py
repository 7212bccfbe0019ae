"""HCD database clusters managed by Mission Control.

An HCD cluster is a ``MissionControlCluster`` custom resource in a Mission
Control project namespace. Mission Control's operator turns it into the
Cassandra pods, the superuser secret and the Data API service.
"""

import os
import re
import subprocess
from pathlib import Path
from typing import Any, Optional, Sequence

import yaml
from kubernetes.client.rest import ApiException

from .config import (
    DATA_API_PORT,
    DATA_API_SERVICE_FILE,
    DEFAULT_HCD_NAME,
    GKE_AUTH_PLUGIN_ENV,
    HCD_MANIFEST_PATTERNS,
    HCD_MANIFEST_SUFFIX,
)
from .mission_control import write_manifest
from .state import (
    DATA_API_SVC,
    DATA_API_URL,
    HCD_NAME,
    HCD_PASSWORD,
    HCD_USERNAME,
    PROJECT_NAMESPACE,
    Session,
)
from .utils import (
    InstallError,
    StepSkipped,
    ask,
    choose,
    confirm,
    confirm_delete,
    console,
    echo,
    log,
    poll,
    print_table,
    run,
)

MCC_GROUP = "missioncontrol.datastax.com"
MCC_VERSION = "v1beta2"
MCC_PLURAL = "missioncontrolclusters"
MCC_KIND = "MissionControlCluster"

SUPERUSER_SECRET = "hcd-superuser"
DATA_API_PATTERN = re.compile(r"data-api|stargate", re.IGNORECASE)
CASSANDRA_POD_PATTERN = re.compile(r"(hcd|cassandra).*rack.*sts", re.IGNORECASE)


def build_cluster_manifest(name: str, namespace: str, datacenter: str) -> dict[str, Any]:
    """Render a three-rack, three-node HCD cluster with the Data API enabled.

    Args:
        name: Cluster name
        namespace: Mission Control project namespace
        datacenter: Datacenter name

    Returns:
        MissionControlCluster manifest
    """
    return {
        "apiVersion": f"{MCC_GROUP}/{MCC_VERSION}",
        "kind": MCC_KIND,
        "metadata": {"name": name, "namespace": namespace},
        "spec": {
            "createIssuer": True,
            "dataApi": {"enabled": True, "port": DATA_API_PORT},
            "encryption": {
                "internodeEncryption": {
                    "certs": {"createCerts": True},
                    "enabled": True,
                },
            },
            "k8ssandra": {
                "auth": True,
                "cassandra": {
                    "config": {
                        "cassandraYaml": {},
                        "dseYaml": {},
                        "jvmOptions": {"gc": "G1GC", "heapSize": "1Gi"},
                    },
                    "datacenters": [
                        {
                            "config": {"cassandraYaml": {}, "dseYaml": {}},
                            "datacenterName": datacenter,
                            "dseWorkloads": {},
                            "metadata": {
                                "name": datacenter,
                                "pods": {},
                                "services": {
                                    "additionalSeedService": {},
                                    "allPodsService": {},
                                    "dcService": {},
                                    "nodePortService": {},
                                    "seedService": {},
                                },
                            },
                            "networking": {},
                            "perNodeConfigMapRef": {},
                            "racks": [
                                {"name": f"rack{n}", "nodeAffinityLabels": {}}
                                for n in range(1, 4)
                            ],
                            "size": 3,
                        }
                    ],
                    "resources": {"requests": {"cpu": "1000m", "memory": "4Gi"}},
                    "serverType": "hcd",
                    "serverVersion": "1.1.0",
                    "storageConfig": {
                        "cassandraDataVolumeClaimSpec": {
                            "accessModes": ["ReadWriteOnce"],
                            "resources": {"requests": {"storage": "8Gi"}},
                            "storageClassName": "standard",
                        },
                    },
                    "superuserSecretRef": {"name": SUPERUSER_SECRET},
                },
            },
        },
    }


def show_namespaces(session: Session) -> None:
    log("Available namespaces (look for your project slug - it usually starts with 'opscenter-'):")
    print_table("Namespaces", ["NAME"], [[ns] for ns in session.kube.list_namespaces()])


def prompt_project_namespace(session: Session) -> str:
    """Ask for the project namespace and make sure it exists."""
    show_namespaces(session)
    namespace = ask("Enter your project namespace/slug")
    if not namespace:
        raise InstallError("Project namespace cannot be empty.")
    if not session.kube.namespace_exists(namespace):
        raise InstallError(f"Namespace {namespace} does not exist.")
    return namespace


def resolve_project_namespace(session: Session) -> str:
    """Project namespace recorded by the cluster install, or asked for."""
    namespace = session.config.get(PROJECT_NAMESPACE) or prompt_project_namespace(session)
    log(f"Using project namespace: {namespace}")
    return namespace


def pick(names: Sequence[str], found_msg: str, prompt: str) -> str:
    """Pick one name: the only candidate, or ask when there are none or several."""
    if len(names) == 1:
        log(f"{found_msg}: {names[0]}")
        return names[0]
    if names:
        log("Multiple candidates found:")
        for name in names:
            echo(f"  {name}")
    return ask(prompt)


def install_hcd_cluster(session: Session) -> None:
    """Create an HCD cluster in a Mission Control project."""
    log("Installing HCD Cluster using Mission Control...")
    os.environ[GKE_AUTH_PLUGIN_ENV] = "True"

    log("IMPORTANT: Before continuing, you must have:")
    log("1. Completed Mission Control installation")
    log("2. Created a project in the Mission Control UI")
    log("3. Noted the Project Slug from the UI or from the namespace list")
    if not confirm("Have you completed these steps?"):
        log("Please complete the prerequisites first:")
        log("1. Access Mission Control UI and log in")
        log("2. Click '+New Project' and create a project")
        log("3. Note the Project Slug value shown in the UI")
        log("4. Run the installer again and select option 2")
        raise StepSkipped("Mission Control project is not ready yet.")

    namespace = prompt_project_namespace(session)
    log(f"Using project namespace: {namespace}")

    log(f"Enter a name for your HCD cluster (default: {DEFAULT_HCD_NAME}):")
    name = ask("HCD Cluster Name", DEFAULT_HCD_NAME) or DEFAULT_HCD_NAME
    log("Enter a name for the Datacenter:")
    datacenter = ask("Datacenter Name")
    if not datacenter:
        raise InstallError("Datacenter name cannot be empty.")

    log("Creating HCD cluster configuration...")
    manifest = build_cluster_manifest(name, namespace, datacenter)
    manifest_path = session.path(f"{name}{HCD_MANIFEST_SUFFIX}")
    write_manifest(manifest_path, manifest)
    log(f"Wrote {manifest_path}")

    log("Applying HCD cluster configuration...")
    if not _apply_cluster(session, manifest):
        log("Failed to apply HCD cluster configuration.", "warning")
        if not confirm("Would you like to retry?"):
            raise InstallError("Cannot continue without HCD cluster.")
        if not _apply_cluster(session, manifest):
            raise InstallError("Failed to apply HCD cluster configuration after retry.")

    log("Cluster creation initiated. The HCD cluster will be created in the Mission Control UI.")
    log("This process may take several minutes to complete.")
    log("You can check the status in the Mission Control UI or with:")
    log(f"kubectl get pods -n {namespace}")

    session.config.set(PROJECT_NAMESPACE, namespace)
    session.config.set(HCD_NAME, name)

    if confirm("Would you like to check the status of the pods?"):
        show_pods(session, namespace)

    log("HCD Cluster creation has been initiated. You can monitor the progress in the Mission Control UI.")
    log(f"Once the cluster is ready, you can access the Data API at port {DATA_API_PORT}.")
    session.state.save("hcd_cluster_initiated")


def _apply_cluster(session: Session, manifest: dict[str, Any]) -> bool:
    try:
        session.kube.apply_custom_object(MCC_GROUP, MCC_VERSION, MCC_PLURAL, manifest)
        return True
    except ApiException as e:
        log(f"Kubernetes API error: {e.reason}", "error")
        return False


def show_pods(session: Session, namespace: str) -> None:
    log(f"Checking pods in namespace {namespace}:")
    print_table(
        f"Pods in {namespace}",
        ["NAME", "STATUS", "RESTARTS"],
        session.kube.pod_table(namespace),
    )


def find_cluster_manifests(directory: Path) -> list[Path]:
    """Local HCD manifests, trying each filename pattern in turn."""
    for pattern in HCD_MANIFEST_PATTERNS:
        matches = sorted(directory.glob(pattern))
        if matches:
            return matches
    return []


def manifest_name(path: Path) -> Optional[str]:
    with path.open(encoding="utf-8") as f:
        document = yaml.safe_load(f) or {}
    return (document.get("metadata") or {}).get("name")


def delete_hcd_cluster(session: Session) -> None:
    """Delete an HCD cluster, from a local manifest when there is one."""
    log("HCD Cluster Deletion")
    namespace = resolve_project_namespace(session)

    manifests = find_cluster_manifests(session.settings.workdir)
    if manifests:
        log("Found HCD cluster YAML files:")
        for path in manifests:
            echo(f"  {path.name}")
        if len(manifests) > 1:
            selected = session.path(ask("Enter the name of the YAML file to use for deletion"))
        else:
            selected = manifests[0]
        if not selected.is_file():
            raise InstallError(f"YAML file {selected.name} not found.")

        log(f"Selected YAML file: {selected.name}")
        cluster_name = manifest_name(selected)
        log(f"HCD cluster name from YAML: {cluster_name}")
        console.print(
            f"\n[bold red]WARNING: This will permanently delete the HCD cluster "
            f"'{cluster_name}' and all its data![/bold red]"
        )
        echo(f"YAML file: {selected.name}")
        echo(f"Namespace: {namespace}")
        if not confirm_delete("Are you sure you want to delete this HCD cluster?"):
            log("HCD cluster deletion cancelled.")
            return

        log(f"Deleting HCD cluster using YAML file: {selected.name}")
        try:
            run(["kubectl", "delete", "-f", selected])
        except (subprocess.CalledProcessError, FileNotFoundError):
            raise InstallError(f"Failed to delete HCD cluster using {selected.name}.")
        log(f"HCD cluster deletion initiated successfully using {selected.name}.")
    else:
        log("No HCD cluster YAML files found in current directory.")
        log(f"Looking for existing HCD clusters in namespace {namespace}...")
        clusters = session.kube.list_custom_objects(MCC_GROUP, MCC_VERSION, MCC_PLURAL, namespace)
        if not clusters:
            raise StepSkipped(f"No HCD clusters found in namespace {namespace}.")

        log("Found HCD clusters:")
        for name in clusters:
            echo(f"  {name}")
        if len(clusters) > 1:
            cluster_name = ask("Enter the name of the HCD cluster to delete")
        else:
            cluster_name = clusters[0]
        log(f"Selected HCD cluster: {cluster_name}")

        console.print(
            f"\n[bold red]WARNING: This will permanently delete the HCD cluster "
            f"'{cluster_name}' and all its data![/bold red]"
        )
        if not confirm_delete("Are you sure you want to delete this HCD cluster?"):
            log("HCD cluster deletion cancelled.")
            return

        log(f"Deleting HCD cluster {cluster_name} from namespace {namespace}...")
        try:
            session.kube.delete_custom_object(MCC_GROUP, MCC_VERSION, MCC_PLURAL, cluster_name, namespace)
        except ApiException as e:
            raise InstallError(f"Failed to delete HCD cluster {cluster_name}: {e.reason}")
        log(f"HCD cluster {cluster_name} deletion initiated successfully.")

    log("Note: It may take several minutes for all resources to be fully removed.")

    if cluster_name and confirm("Would you like to monitor the deletion progress?"):
        log("Monitoring HCD cluster deletion progress...")
        log("Press Ctrl+C to stop monitoring")
        wait_for_pods_gone(session, namespace, cluster_name)
        log("HCD cluster deletion completed!")

    log("HCD cluster deletion process completed.")


def wait_for_pods_gone(session: Session, namespace: str, cluster_name: str) -> None:
    def gone() -> bool:
        remaining = [p for p in session.kube.list_pods(namespace) if cluster_name in p]
        if remaining:
            echo("Waiting for HCD pods to be deleted...")
            for pod in remaining:
                echo(f"  {pod}")
        return not remaining

    poll(gone, session.settings.poll_interval)


def set_service_type(manifest: dict[str, Any], service_type: str) -> dict[str, Any]:
    """Copy of an exported service with a new type and server-owned fields dropped."""
    metadata = {
        key: value
        for key, value in manifest.get("metadata", {}).items()
        if key in ("name", "namespace", "labels", "annotations")
    }
    spec = dict(manifest.get("spec", {}))
    spec["type"] = service_type
    return {
        "apiVersion": manifest.get("apiVersion", "v1"),
        "kind": manifest.get("kind", "Service"),
        "metadata": metadata,
        "spec": spec,
    }


def expose_data_api(session: Session) -> None:
    """Turn the Data API service into a LoadBalancer."""
    log("Setting up Data API access...")
    kube = session.kube
    namespace = resolve_project_namespace(session)

    services = kube.list_services(namespace)
    print_table(
        f"Services in {namespace}",
        ["NAME", "TYPE", "EXTERNAL-IP"],
        [[s["name"], s["type"], s["external_ip"] or "<none>"] for s in services],
    )

    candidates = [s["name"] for s in services if DATA_API_PATTERN.search(s["name"])]
    if not candidates:
        log(f"No Data API service found in namespace {namespace}.")
    service = pick(candidates, "Found Data API service", "Enter the name of the Data API service")
    if not service:
        raise InstallError("Data API service name cannot be empty.")

    log("Exporting Data API service configuration...")
    try:
        exported = kube.read_service_manifest(service, namespace)
    except ApiException:
        raise InstallError(f"Failed to get service {service}. Please check the service name.")

    export_path = session.path(DATA_API_SERVICE_FILE)
    write_manifest(export_path.with_name(export_path.name + ".bak"), exported)
    write_manifest(export_path, set_service_type(exported, "LoadBalancer"))

    log("Modifying service type from ClusterIP to LoadBalancer...")
    try:
        kube.set_service_type(service, namespace, "LoadBalancer")
    except ApiException as e:
        raise InstallError(f"Failed to update Data API service: {e.reason}")
    log("Data API service updated successfully.")

    log("Waiting for LoadBalancer to be provisioned with an external IP...")
    external_ip = kube.wait_for_external_ip(
        service,
        namespace,
        timeout=session.settings.loadbalancer_timeout,
        interval=session.settings.poll_interval,
    )
    if external_ip:
        url = f"http://{external_ip}:{DATA_API_PORT}"
        log(f"Data API is now accessible at: {url}/")
        session.config.set(DATA_API_SVC, service)
        session.config.set(DATA_API_URL, url)
    else:
        log("Timed out waiting for external IP.", "warning")
        log("The LoadBalancer service has been created, but hasn't received an external IP yet.", "warning")
        log(f"You can check its status later with: kubectl get svc {service} -n {namespace}", "warning")

    forward = [
        "kubectl", "port-forward", f"svc/{service}", "-n", namespace,
        f"{DATA_API_PORT}:{DATA_API_PORT}",
    ]
    if confirm("Would you like to set up port forwarding to access the Data API locally?"):
        log(f"Starting port forwarding from localhost:{DATA_API_PORT} to the Data API service...")
        log("Keep this terminal window open to maintain the connection.")
        log("Press Ctrl+C to stop port forwarding when done.")
        run(forward, check=False)
    else:
        log("You can set up port forwarding later with:")
        log(" ".join(forward))


def read_credentials(
    session: Session, secret: str, namespace: str, username_key: str, password_key: str
) -> tuple[str, str]:
    try:
        data = session.kube.read_secret_data(secret, namespace)
    except ApiException:
        return "", ""
    return data.get(username_key, ""), data.get(password_key, "")


def get_hcd_credentials(session: Session) -> None:
    """Print the superuser credentials and how to reach a Cassandra pod."""
    log("Retrieving HCD superuser credentials...")
    kube = session.kube
    namespace = resolve_project_namespace(session)

    secrets = kube.list_secrets(namespace)
    print_table(f"Secrets in {namespace}", ["NAME"], [[s] for s in secrets])

    candidates = [s for s in secrets if "superuser" in s.lower()]
    if not candidates:
        log("No superuser secret found.")
    secret = pick(candidates, "Found superuser secret", "Enter the name of the superuser secret")
    if not secret:
        raise InstallError("Superuser secret name cannot be empty.")

    log(f"Retrieving credentials from secret {secret}...")
    username, password = read_credentials(session, secret, namespace, "username", "password")
    if not username or not password:
        log(f"Failed to retrieve credentials from secret {secret}.", "warning")
        try:
            keys = sorted(kube.read_secret_data(secret, namespace))
        except ApiException:
            keys = []
        log(f"Available data keys in the secret: {', '.join(keys) or '(none)'}")
        log("Please enter the correct key names for username and password:")
        username_key = ask("Username key", "username") or "username"
        password_key = ask("Password key", "password") or "password"
        username, password = read_credentials(session, secret, namespace, username_key, password_key)
        if not username or not password:
            raise InstallError("Failed to retrieve credentials with the provided keys.")

    log("Successfully retrieved HCD credentials:")
    log(f"Username: {username}")
    log(f"Password: {password}")
    session.config.set(HCD_USERNAME, username)
    session.config.set(HCD_PASSWORD, password)

    log(f"Looking for Cassandra pods in namespace {namespace}...")
    pods = [p for p in kube.list_pods(namespace) if CASSANDRA_POD_PATTERN.search(p)]
    if not pods:
        log("No Cassandra pods found.")
        return

    log("Found Cassandra pods:")
    for pod in pods:
        echo(f"  {pod}")
    pod = pods[0] if len(pods) == 1 else ask("Enter the name of the pod to connect to")
    if not pod:
        log("No pod selected. Skipping connection.")
        return

    exec_cmd = ["kubectl", "exec", "-it", pod, "-n", namespace, "--", "bash"]
    tools = [
        f"nodetool -u {username} -pw {password} status",
        f"cqlsh -u {username} -p {password}",
    ]
    if confirm(f"Would you like to connect to the Cassandra pod {pod}?"):
        log(f"Connecting to pod {pod}...")
        log("When connected, you can run:")
        for line in tools:
            log(line)
        run(exec_cmd, check=False)
    else:
        log("You can connect to the pod later with:")
        log(" ".join(exec_cmd))
        log("Then run these commands:")
        for line in tools:
            log(line)


def hcd_post_installation(session: Session) -> None:
    """Menu for the steps that follow a cluster install."""
    log("HCD Post-Installation Setup")
    log("Select an action:")
    choice = choose(
        "Enter your choice",
        [
            "Expose Data API as LoadBalancer",
            "Retrieve HCD superuser credentials",
            "Do both (recommended)",
            "Return to main menu",
        ],
    )
    if choice in (1, 3):
        expose_data_api(session)
    if choice in (2, 3):
        get_hcd_credentials(session)
    if choice is None:
        log("Invalid choice. Returning to main menu.", "warning")
