"""Shared fixtures: a fake shell, a fake cluster and scripted answers."""

import copy
import io
import os
import subprocess
from typing import Any, Optional

import pytest
from kubernetes.client.rest import ApiException

from mcgke import utils
from mcgke.config import GKE_AUTH_PLUGIN_ENV, Settings
from mcgke.state import Session


class FakeProcess:
    def __init__(self, returncode: int, output: str) -> None:
        self.returncode = returncode
        self.stdout = io.StringIO(output)

    def __enter__(self) -> "FakeProcess":
        return self

    def __exit__(self, *exc: Any) -> None:
        return None

    def wait(self) -> int:
        return self.returncode


class FakeShell:
    """Records commands and answers them from registered responses.

    The first response whose prefix matches the command wins; unmatched
    commands succeed with no output.
    """

    def __init__(self) -> None:
        self.calls: list[list[str]] = []
        self.inputs: list[Optional[str]] = []
        self.responses: list[tuple[tuple[str, ...], int, str, str]] = []

    def on(self, *prefix: str, returncode: int = 0, stdout: str = "", stderr: str = "") -> None:
        self.responses.append((prefix, returncode, stdout, stderr))

    def _match(self, cmd: list[str]) -> tuple[int, str, str]:
        for prefix, returncode, stdout, stderr in self.responses:
            if tuple(cmd[: len(prefix)]) == prefix:
                return returncode, stdout, stderr
        return 0, "", ""

    def run(self, cmd, check=False, capture_output=False, text=False, timeout=None,
            cwd=None, env=None, input=None):
        self.calls.append(list(cmd))
        self.inputs.append(input)
        returncode, stdout, stderr = self._match(list(cmd))
        if check and returncode:
            raise subprocess.CalledProcessError(returncode, cmd, stdout, stderr)
        return subprocess.CompletedProcess(cmd, returncode, stdout, stderr)

    def popen(self, cmd, **kwargs):
        self.calls.append(list(cmd))
        self.inputs.append(None)
        returncode, stdout, stderr = self._match(list(cmd))
        return FakeProcess(returncode, stdout + stderr)

    def ran(self, *prefix: str) -> bool:
        return any(tuple(call[: len(prefix)]) == prefix for call in self.calls)

    def commands(self, tool: str) -> list[list[str]]:
        return [call for call in self.calls if call and call[0] == tool]


class FakeKube:
    """In-memory stand-in for KubeClient."""

    def __init__(self) -> None:
        self.namespaces = {"default"}
        self.deployments: dict[str, list[str]] = {}
        self.pods: dict[str, list[str]] = {}
        self.selected_pods: dict[tuple[str, str], list[str]] = {}
        self.services: dict[str, list[dict]] = {}
        self.service_manifests: dict[tuple[str, str], dict] = {}
        self.external_ips: dict[str, str] = {}
        self.secrets: dict[str, dict[str, dict[str, str]]] = {}
        self.custom_objects: dict[str, list[str]] = {}
        self.available = True
        self.fail_apply = 0
        self.created: list[str] = []
        self.applied: list[dict] = []
        self.patched: list[tuple[str, str, str]] = []
        self.deleted: list[tuple[str, str, Optional[str]]] = []
        self.waited: list[str] = []

    def namespace_exists(self, name):
        return name in self.namespaces

    def create_namespace(self, name):
        self.namespaces.add(name)
        self.created.append(name)

    def delete_namespace(self, name):
        self.namespaces.discard(name)
        self.deleted.append(("namespace", name, None))

    def list_namespaces(self):
        return sorted(self.namespaces)

    def list_deployments(self, namespace, label_selector=None):
        return list(self.deployments.get(namespace, []))

    def delete_deployments(self, namespace, label_selector):
        self.deleted.append(("deployments", label_selector, namespace))

    def list_pods(self, namespace, label_selector=None):
        if label_selector:
            return list(self.selected_pods.get((namespace, label_selector), []))
        return list(self.pods.get(namespace, []))

    def pod_table(self, namespace):
        return [(name, "Running", 0) for name in self.pods.get(namespace, [])]

    def delete_pods(self, namespace, label_selector):
        self.deleted.append(("pods", label_selector, namespace))

    def wait_for_deployment(self, name, namespace, timeout, interval=5):
        self.waited.append(name)
        return self.available

    def wait_for_deployments(self, namespace, label_selector, timeout, interval=5):
        self.waited.append(label_selector)
        return self.available

    def list_services(self, namespace):
        return [dict(service) for service in self.services.get(namespace, [])]

    def read_service_manifest(self, name, namespace):
        if (namespace, name) not in self.service_manifests:
            raise ApiException(status=404, reason="Not Found")
        return copy.deepcopy(self.service_manifests[(namespace, name)])

    def apply_service(self, manifest):
        self.applied.append(manifest)

    def set_service_type(self, name, namespace, service_type):
        self.patched.append((name, namespace, service_type))

    def wait_for_external_ip(self, name, namespace, timeout, interval):
        return self.external_ips.get(name)

    def list_secrets(self, namespace):
        return list(self.secrets.get(namespace, {}))

    def read_secret_data(self, name, namespace):
        try:
            return dict(self.secrets[namespace][name])
        except KeyError:
            raise ApiException(status=404, reason="Not Found")

    def apply_custom_object(self, group, version, plural, manifest):
        if self.fail_apply:
            self.fail_apply -= 1
            raise ApiException(status=500, reason="Internal Server Error")
        self.applied.append(manifest)

    def list_custom_objects(self, group, version, plural, namespace):
        return list(self.custom_objects.get(namespace, []))

    def delete_custom_object(self, group, version, plural, name, namespace, ignore_not_found=False):
        self.deleted.append((plural, name, namespace))
        return True


class Answers:
    """Scripted replies to click.prompt and click.confirm, in order.

    ``None`` accepts the prompt's default.
    """

    def __init__(self) -> None:
        self.queue: list[Any] = []
        self.asked: list[str] = []

    def add(self, *answers: Any) -> None:
        self.queue.extend(answers)

    def _next(self, text: str) -> Any:
        self.asked.append(text)
        if not self.queue:
            raise AssertionError(f"Unexpected prompt: {text}")
        return self.queue.pop(0)

    def prompt(self, text, default=None, show_default=True, **kwargs):
        answer = self._next(text)
        return default if answer is None else answer

    def confirm(self, text, default=False, **kwargs):
        answer = self._next(text)
        if not isinstance(answer, bool):
            raise AssertionError(f"Expected a yes/no answer for: {text}")
        return answer


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    """Keep environment changes made by the installer out of other tests."""
    monkeypatch.setenv(GKE_AUTH_PLUGIN_ENV, "False")
    monkeypatch.setenv("PATH", os.environ.get("PATH", ""))
    (tmp_path / "home").mkdir(exist_ok=True)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))


@pytest.fixture
def shell(monkeypatch) -> FakeShell:
    fake = FakeShell()
    monkeypatch.setattr(utils.subprocess, "run", fake.run)
    monkeypatch.setattr(utils.subprocess, "Popen", fake.popen)
    return fake


@pytest.fixture
def kube() -> FakeKube:
    return FakeKube()


@pytest.fixture
def answers(monkeypatch) -> Answers:
    scripted = Answers()
    monkeypatch.setattr(utils.click, "prompt", scripted.prompt)
    monkeypatch.setattr(utils.click, "confirm", scripted.confirm)
    return scripted


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        workdir=tmp_path,
        poll_interval=0,
        loadbalancer_timeout=0,
        api_propagation_delay=0,
        deployment_poll_attempts=2,
        deployment_poll_interval=0,
        terraform_retry_delay=0,
        hcd_delete_grace=0,
    )


@pytest.fixture
def session(settings, kube) -> Session:
    current = Session.create(settings)
    current._kube = kube
    return current
