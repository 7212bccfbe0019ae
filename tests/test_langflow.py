"""Tests for the Langflow Helm release."""

import pytest

from mcgke import langflow
from mcgke.state import LANGFLOW_NAMESPACE
from mcgke.utils import InstallError, StepSkipped


@pytest.fixture
def helm_installed(monkeypatch):
    monkeypatch.setattr(langflow, "command_exists", lambda name: True)


def test_write_values_keeps_existing(session) -> None:
    target = langflow.write_values(session)
    assert target.read_text() == langflow.bundled_values().read_text()

    target.write_text("replicaCount: 2\n")
    langflow.write_values(session)
    assert target.read_text() == "replicaCount: 2\n"

    langflow.write_values(session, overwrite=True)
    assert target.read_text() == langflow.bundled_values().read_text()


def test_install_requires_helm(monkeypatch, session) -> None:
    monkeypatch.setattr(langflow, "command_exists", lambda name: False)

    with pytest.raises(InstallError, match="Helm"):
        langflow.install_langflow(session)


def test_install_without_values_declined(session, answers, helm_installed) -> None:
    answers.add(False)

    with pytest.raises(InstallError, match="values.yaml"):
        langflow.install_langflow(session)


def test_install_with_defaults(session, kube, shell, answers, helm_installed) -> None:
    answers.add(True, None)

    langflow.install_langflow(session)

    assert kube.created == ["langflow"]
    assert shell.ran("helm", "repo", "add", "langflow")
    assert shell.commands("helm")[-1] == [
        "helm", "install", "langflow-ide", "langflow/langflow-ide", "-n", "langflow",
    ]
    assert kube.waited == [langflow.INSTANCE_SELECTOR]
    assert session.config.get(LANGFLOW_NAMESPACE) == "langflow"


def test_install_with_values_file(session, kube, shell, answers, helm_installed) -> None:
    values = langflow.write_values(session)
    kube.namespaces.add("ai")
    kube.services["ai"] = [
        {"name": "langflow-ide-langflow-frontend", "type": "LoadBalancer", "external_ip": "34.9.9.9"},
    ]
    answers.add("ai")

    langflow.install_langflow(session)

    assert kube.created == []
    assert shell.commands("helm")[-1][-2:] == ["-f", str(values)]
    assert session.config.get(LANGFLOW_NAMESPACE) == "ai"


def test_upgrade_existing_release(session, kube, shell, answers, helm_installed) -> None:
    kube.namespaces.add("langflow")
    shell.on("helm", "list", stdout="langflow-ide\n")
    answers.add(True, None, True)

    langflow.install_langflow(session)

    assert shell.commands("helm")[-1][:2] == ["helm", "upgrade"]


def test_existing_release_left_alone(session, kube, shell, answers, helm_installed) -> None:
    kube.namespaces.add("langflow")
    shell.on("helm", "list", stdout="langflow-ide\n")
    answers.add(True, None, False)

    langflow.install_langflow(session)

    assert not shell.ran("helm", "install")
    assert not shell.ran("helm", "upgrade")
    assert not session.config.has(LANGFLOW_NAMESPACE)


def test_failed_repo_update(session, kube, shell, answers, helm_installed) -> None:
    shell.on("helm", "repo", "update", returncode=1, stderr="network down")
    answers.add(True, None)

    with pytest.raises(InstallError):
        langflow.install_langflow(session)


def test_delete_release_and_namespace(session, kube, shell, answers) -> None:
    session.config.set(LANGFLOW_NAMESPACE, "langflow")
    kube.namespaces.add("langflow")
    shell.on("helm", "list", stdout="langflow-ide\n")
    answers.add("DELETE", True)

    langflow.delete_langflow(session)

    assert shell.ran("helm", "uninstall", "langflow-ide", "-n", "langflow")
    assert ("namespace", "langflow", None) in kube.deleted
    assert not session.config.has(LANGFLOW_NAMESPACE)


def test_delete_cancelled(session, kube, shell, answers) -> None:
    session.config.set(LANGFLOW_NAMESPACE, "langflow")
    kube.namespaces.add("langflow")
    shell.on("helm", "list", stdout="langflow-ide\n")
    answers.add("keep")

    langflow.delete_langflow(session)

    assert not shell.ran("helm", "uninstall")
    assert session.config.get(LANGFLOW_NAMESPACE) == "langflow"


def test_delete_missing_release(session, kube, shell, answers) -> None:
    kube.namespaces.add("langflow")
    answers.add(None)

    with pytest.raises(StepSkipped):
        langflow.delete_langflow(session)


def test_delete_missing_namespace(session, kube, answers) -> None:
    answers.add("gone")

    with pytest.raises(StepSkipped):
        langflow.delete_langflow(session)


def test_status(session, kube, shell, answers) -> None:
    kube.namespaces.add("langflow")
    kube.pods["langflow"] = ["langflow-ide-langflow-backend-0"]
    answers.add(None)

    langflow.check_langflow_status(session)

    assert shell.calls == [["helm", "list", "-n", "langflow"]]


def test_menu_dispatch(monkeypatch, session, answers) -> None:
    called = []
    monkeypatch.setattr(langflow, "check_langflow_status", lambda s: called.append("status"))
    answers.add("3")

    langflow.manage_langflow(session)

    assert called == ["status"]
