"""Kubernetes API access for the installer."""

import base64
from typing import Any, Optional

from kubernetes import client, config
from kubernetes.client import AppsV1Api, CoreV1Api, CustomObjectsApi
from kubernetes.client.rest import ApiException

from .utils import InstallError, poll


class KubeClient:
    """Thin wrapper over the Kubernetes API clients.

    Loads credentials from the kubeconfig written by
    ``gcloud container clusters get-credentials``.
    """

    def __init__(self, kubeconfig_path: Optional[str] = None) -> None:
        """Initialize the Kubernetes client.

        Args:
            kubeconfig_path: Path to kubeconfig file (default location if not set)
        """
        self._kubeconfig_path = kubeconfig_path
        self._load_config()
        self.core: CoreV1Api = client.CoreV1Api()
        self.apps: AppsV1Api = client.AppsV1Api()
        self.custom: CustomObjectsApi = client.CustomObjectsApi()

    def _load_config(self) -> None:
        """Load Kubernetes configuration."""
        try:
            if self._kubeconfig_path:
                config.load_kube_config(config_file=self._kubeconfig_path)
            else:
                config.load_kube_config()
        except config.ConfigException as e:
            raise InstallError(f"Failed to load kubeconfig: {e}")

    # Namespaces

    def namespace_exists(self, name: str) -> bool:
        try:
            self.core.read_namespace(name=name)
            return True
        except ApiException as e:
            if e.status == 404:
                return False
            raise

    def create_namespace(self, name: str) -> None:
        self.core.create_namespace(
            client.V1Namespace(metadata=client.V1ObjectMeta(name=name))
        )

    def delete_namespace(self, name: str) -> None:
        self.core.delete_namespace(name=name)

    def list_namespaces(self) -> list[str]:
        return [ns.metadata.name for ns in self.core.list_namespace().items]

    # Workloads

    def list_deployments(self, namespace: str, label_selector: Optional[str] = None) -> list[str]:
        kwargs = {"label_selector": label_selector} if label_selector else {}
        try:
            deployments = self.apps.list_namespaced_deployment(namespace=namespace, **kwargs)
        except ApiException as e:
            if e.status == 404:
                return []
            raise
        return [d.metadata.name for d in deployments.items]

    def delete_deployments(self, namespace: str, label_selector: str) -> None:
        self.apps.delete_collection_namespaced_deployment(
            namespace=namespace, label_selector=label_selector
        )

    def list_pods(self, namespace: str, label_selector: Optional[str] = None) -> list[str]:
        kwargs = {"label_selector": label_selector} if label_selector else {}
        try:
            pods = self.core.list_namespaced_pod(namespace=namespace, **kwargs)
        except ApiException as e:
            if e.status == 404:
                return []
            raise
        return [p.metadata.name for p in pods.items]

    def pod_table(self, namespace: str) -> list[tuple[str, str, int]]:
        """Return (name, phase, restarts) for every pod in a namespace."""
        rows = []
        for pod in self.core.list_namespaced_pod(namespace=namespace).items:
            restarts = sum(
                cs.restart_count for cs in (pod.status.container_statuses or [])
            )
            rows.append((pod.metadata.name, pod.status.phase, restarts))
        return rows

    def delete_pods(self, namespace: str, label_selector: str) -> None:
        self.core.delete_collection_namespaced_pod(
            namespace=namespace, label_selector=label_selector
        )

    def deployment_available(self, name: str, namespace: str) -> bool:
        try:
            deployment = self.apps.read_namespaced_deployment(name=name, namespace=namespace)
        except ApiException as e:
            if e.status == 404:
                return False
            raise
        return any(
            c.type == "Available" and c.status == "True"
            for c in (deployment.status.conditions or [])
        )

    def wait_for_deployment(
        self, name: str, namespace: str, timeout: int, interval: float = 5
    ) -> bool:
        """Wait until a deployment reports the Available condition."""
        return bool(
            poll(lambda: self.deployment_available(name, namespace), interval, timeout=timeout)
        )

    def wait_for_deployments(
        self, namespace: str, label_selector: str, timeout: int, interval: float = 5
    ) -> bool:
        """Wait until every deployment matching a selector is Available."""

        def all_available() -> bool:
            names = self.list_deployments(namespace, label_selector)
            return bool(names) and all(self.deployment_available(n, namespace) for n in names)

        return bool(poll(all_available, interval, timeout=timeout))

    # Services

    def list_services(self, namespace: str) -> list[dict[str, Any]]:
        """Return name, type and external IP of every service in a namespace."""
        services = []
        for svc in self.core.list_namespaced_service(namespace=namespace).items:
            services.append({
                "name": svc.metadata.name,
                "type": svc.spec.type,
                "external_ip": _ingress_ip(svc),
            })
        return services

    def read_service_manifest(self, name: str, namespace: str) -> dict[str, Any]:
        svc = self.core.read_namespaced_service(name=name, namespace=namespace)
        return client.ApiClient().sanitize_for_serialization(svc)

    def apply_service(self, manifest: dict[str, Any]) -> None:
        """Create a service, or patch it if it already exists."""
        namespace = manifest["metadata"]["namespace"]
        try:
            self.core.create_namespaced_service(namespace=namespace, body=manifest)
        except ApiException as e:
            if e.status != 409:
                raise
            self.core.patch_namespaced_service(
                name=manifest["metadata"]["name"], namespace=namespace, body=manifest
            )

    def set_service_type(self, name: str, namespace: str, service_type: str) -> None:
        self.core.patch_namespaced_service(
            name=name, namespace=namespace, body={"spec": {"type": service_type}}
        )

    def service_external_ip(self, name: str, namespace: str) -> Optional[str]:
        try:
            svc = self.core.read_namespaced_service(name=name, namespace=namespace)
        except ApiException as e:
            if e.status == 404:
                return None
            raise
        return _ingress_ip(svc)

    def wait_for_external_ip(
        self, name: str, namespace: str, timeout: int, interval: float
    ) -> Optional[str]:
        """Poll a LoadBalancer service until it gets an external IP."""
        return poll(
            lambda: self.service_external_ip(name, namespace), interval, timeout=timeout
        )

    # Secrets

    def list_secrets(self, namespace: str) -> list[str]:
        return [s.metadata.name for s in self.core.list_namespaced_secret(namespace=namespace).items]

    def read_secret_data(self, name: str, namespace: str) -> dict[str, str]:
        """Read a secret and base64-decode its values."""
        secret = self.core.read_namespaced_secret(name=name, namespace=namespace)
        return {
            key: base64.b64decode(value).decode()
            for key, value in (secret.data or {}).items()
        }

    # Custom resources

    def apply_custom_object(
        self, group: str, version: str, plural: str, manifest: dict[str, Any]
    ) -> None:
        """Create a namespaced custom object, replacing it if it already exists."""
        namespace = manifest["metadata"]["namespace"]
        name = manifest["metadata"]["name"]
        try:
            self.custom.create_namespaced_custom_object(
                group=group, version=version, namespace=namespace, plural=plural, body=manifest
            )
        except ApiException as e:
            if e.status != 409:
                raise
            existing = self.custom.get_namespaced_custom_object(
                group=group, version=version, namespace=namespace, plural=plural, name=name
            )
            body = dict(manifest)
            body["metadata"] = dict(
                manifest["metadata"],
                resourceVersion=existing["metadata"]["resourceVersion"],
            )
            self.custom.replace_namespaced_custom_object(
                group=group, version=version, namespace=namespace, plural=plural,
                name=name, body=body,
            )

    def list_custom_objects(
        self, group: str, version: str, plural: str, namespace: str
    ) -> list[str]:
        try:
            result = self.custom.list_namespaced_custom_object(
                group=group, version=version, namespace=namespace, plural=plural
            )
        except ApiException as e:
            if e.status == 404:
                return []
            raise
        return [item["metadata"]["name"] for item in result.get("items", [])]

    def delete_custom_object(
        self,
        group: str,
        version: str,
        plural: str,
        name: str,
        namespace: str,
        ignore_not_found: bool = False,
    ) -> bool:
        """Delete a namespaced custom object.

        Returns:
            False if the object did not exist and ignore_not_found is set
        """
        try:
            self.custom.delete_namespaced_custom_object(
                group=group, version=version, namespace=namespace, plural=plural, name=name
            )
            return True
        except ApiException as e:
            if e.status == 404 and ignore_not_found:
                return False
            raise


def _ingress_ip(svc: Any) -> Optional[str]:
    lb = svc.status.load_balancer if svc.status else None
    for ingress in (lb.ingress if lb and lb.ingress else []):
        if ingress.ip:
            return ingress.ip
    return None
