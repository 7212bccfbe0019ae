"""Tests for HCD cluster management."""

import pytest
import yaml

from mcgke import hcd
from mcgke.config import DATA_API_SERVICE_FILE
from mcgke.state import (
    DATA_API_SVC,
    DATA_API_URL,
    HCD_NAME,
    HCD_PASSWORD,
    HCD_USERNAME,
    PROJECT_NAMESPACE,
)
from mcgke.utils import InstallError, StepSkipped

PROJECT = "opscenter-abc123"


@pytest.fixture
def project(session, kube):
    kube.namespaces.add(PROJECT)
    session.config.set(PROJECT_NAMESPACE, PROJECT)
    return PROJECT


def test_cluster_manifest() -> None:
    manifest = hcd.build_cluster_manifest("hcd", PROJECT, "dc1")

    assert manifest["apiVersion"] == "missioncontrol.datastax.com/v1beta2"
    assert manifest["kind"] == "MissionControlCluster"
    assert manifest["metadata"] == {"name": "hcd", "namespace": PROJECT}
    assert manifest["spec"]["dataApi"] == {"enabled": True, "port": 8181}

    cassandra = manifest["spec"]["k8ssandra"]["cassandra"]
    assert cassandra["serverType"] == "hcd"
    assert cassandra["superuserSecretRef"] == {"name": "hcd-superuser"}
    datacenter = cassandra["datacenters"][0]
    assert datacenter["datacenterName"] == "dc1"
    assert datacenter["size"] == 3
    assert [rack["name"] for rack in datacenter["racks"]] == ["rack1", "rack2", "rack3"]


def test_install_cluster(session, kube, answers) -> None:
    kube.namespaces.add(PROJECT)
    answers.add(True, PROJECT, None, "dc1", False)

    hcd.install_hcd_cluster(session)

    assert kube.applied[0]["metadata"] == {"name": "hcd", "namespace": PROJECT}
    written = yaml.safe_load(session.path("hcd-mission-control-cluster.yaml").read_text())
    assert written == kube.applied[0]
    assert session.config.get(PROJECT_NAMESPACE) == PROJECT
    assert session.config.get(HCD_NAME) == "hcd"
    assert session.state.load() == "hcd_cluster_initiated"


def test_install_cluster_not_ready(session, answers) -> None:
    answers.add(False)

    with pytest.raises(StepSkipped):
        hcd.install_hcd_cluster(session)


def test_install_cluster_unknown_namespace(session, answers) -> None:
    answers.add(True, "missing")

    with pytest.raises(InstallError, match="does not exist"):
        hcd.install_hcd_cluster(session)


def test_install_cluster_requires_datacenter(session, kube, answers) -> None:
    kube.namespaces.add(PROJECT)
    answers.add(True, PROJECT, "db", "")

    with pytest.raises(InstallError, match="Datacenter"):
        hcd.install_hcd_cluster(session)
    assert kube.applied == []


def test_install_cluster_retries_apply(session, kube, answers) -> None:
    kube.namespaces.add(PROJECT)
    kube.fail_apply = 1
    answers.add(True, PROJECT, "db", "dc1", True, False)

    hcd.install_hcd_cluster(session)

    assert len(kube.applied) == 1
    assert session.config.get(HCD_NAME) == "db"


def test_install_cluster_apply_failure_declined(session, kube, answers) -> None:
    kube.namespaces.add(PROJECT)
    kube.fail_apply = 1
    answers.add(True, PROJECT, None, "dc1", False)

    with pytest.raises(InstallError):
        hcd.install_hcd_cluster(session)
    assert session.state.load() == "start"


def test_manifest_patterns_in_priority_order(tmp_path) -> None:
    assert hcd.find_cluster_manifests(tmp_path) == []

    (tmp_path / "hcd-old.yaml").write_text("{}")
    assert [p.name for p in hcd.find_cluster_manifests(tmp_path)] == ["hcd-old.yaml"]

    (tmp_path / "db-mission-control-cluster.yaml").write_text("{}")
    assert [p.name for p in hcd.find_cluster_manifests(tmp_path)] == [
        "db-mission-control-cluster.yaml"
    ]


def test_delete_listed_cluster(session, kube, answers, project) -> None:
    kube.custom_objects[project] = ["hcd"]
    answers.add("DELETE", False)

    hcd.delete_hcd_cluster(session)

    assert kube.deleted == [("missioncontrolclusters", "hcd", project)]


def test_delete_without_clusters(session, kube, project) -> None:
    with pytest.raises(StepSkipped):
        hcd.delete_hcd_cluster(session)


def test_delete_cancelled(session, kube, answers, project) -> None:
    kube.custom_objects[project] = ["hcd"]
    answers.add("no")

    hcd.delete_hcd_cluster(session)

    assert kube.deleted == []


def test_delete_from_manifest(session, kube, shell, answers, project) -> None:
    manifest = session.path("hcd-mission-control-cluster.yaml")
    manifest.write_text(yaml.safe_dump(hcd.build_cluster_manifest("hcd", project, "dc1")))
    kube.pods[project] = ["hcd-dc1-rack1-sts-0"]
    answers.add("DELETE", False)

    hcd.delete_hcd_cluster(session)

    assert shell.calls == [["kubectl", "delete", "-f", str(manifest)]]
    assert kube.deleted == []


def test_delete_from_manifest_failure(session, shell, answers, project) -> None:
    session.path("hcd-mission-control-cluster.yaml").write_text("metadata:\n  name: hcd\n")
    shell.on("kubectl", "delete", returncode=1)
    answers.add("DELETE")

    with pytest.raises(InstallError):
        hcd.delete_hcd_cluster(session)


def test_set_service_type_drops_server_fields() -> None:
    exported = {
        "apiVersion": "v1",
        "kind": "Service",
        "metadata": {
            "name": "hcd-dc1-data-api",
            "namespace": PROJECT,
            "labels": {"app": "data-api"},
            "resourceVersion": "123",
            "uid": "abc",
        },
        "spec": {"type": "ClusterIP", "ports": [{"port": 8181}]},
    }

    service = hcd.set_service_type(exported, "LoadBalancer")

    assert service["metadata"] == {
        "name": "hcd-dc1-data-api",
        "namespace": PROJECT,
        "labels": {"app": "data-api"},
    }
    assert service["spec"] == {"type": "LoadBalancer", "ports": [{"port": 8181}]}
    assert exported["spec"]["type"] == "ClusterIP"


def test_expose_data_api(session, kube, shell, answers, project) -> None:
    kube.services[project] = [
        {"name": "hcd-dc1-all-pods-service", "type": "ClusterIP", "external_ip": None},
        {"name": "hcd-dc1-data-api", "type": "ClusterIP", "external_ip": None},
    ]
    kube.service_manifests[(project, "hcd-dc1-data-api")] = {
        "apiVersion": "v1",
        "kind": "Service",
        "metadata": {"name": "hcd-dc1-data-api", "namespace": project},
        "spec": {"type": "ClusterIP"},
    }
    kube.external_ips["hcd-dc1-data-api"] = "35.1.1.1"
    answers.add(False)

    hcd.expose_data_api(session)

    assert kube.patched == [("hcd-dc1-data-api", project, "LoadBalancer")]
    backup = yaml.safe_load(session.path(DATA_API_SERVICE_FILE + ".bak").read_text())
    assert backup["spec"]["type"] == "ClusterIP"
    exported = yaml.safe_load(session.path(DATA_API_SERVICE_FILE).read_text())
    assert exported["spec"]["type"] == "LoadBalancer"
    assert session.config.get(DATA_API_SVC) == "hcd-dc1-data-api"
    assert session.config.get(DATA_API_URL) == "http://35.1.1.1:8181"
    assert shell.calls == []


def test_expose_data_api_unknown_service(session, kube, answers, project) -> None:
    answers.add("nope")

    with pytest.raises(InstallError, match="nope"):
        hcd.expose_data_api(session)


def test_expose_data_api_port_forward(session, kube, shell, answers, project) -> None:
    kube.services[project] = [{"name": "hcd-stargate", "type": "ClusterIP", "external_ip": None}]
    kube.service_manifests[(project, "hcd-stargate")] = {"metadata": {"name": "hcd-stargate"}}
    answers.add(True)

    hcd.expose_data_api(session)

    assert shell.calls == [[
        "kubectl", "port-forward", "svc/hcd-stargate", "-n", project, "8181:8181",
    ]]
    assert not session.config.has(DATA_API_URL)


def test_credentials(session, kube, answers, project) -> None:
    kube.secrets[project] = {"hcd-superuser": {"username": "hcd-superuser", "password": "s3cret"}}
    kube.pods[project] = ["hcd-dc1-rack1-sts-0", "mission-control-agent"]
    answers.add(False)

    hcd.get_hcd_credentials(session)

    assert session.config.get(HCD_USERNAME) == "hcd-superuser"
    assert session.config.get(HCD_PASSWORD) == "s3cret"


def test_credentials_with_custom_keys(session, kube, answers, project) -> None:
    kube.secrets[project] = {"db-superuser": {"user": "admin", "pass": "pw"}}
    answers.add("user", "pass")

    hcd.get_hcd_credentials(session)

    assert session.config.get(HCD_USERNAME) == "admin"
    assert session.config.get(HCD_PASSWORD) == "pw"


def test_credentials_missing(session, kube, answers, project) -> None:
    kube.secrets[project] = {"hcd-superuser": {}}
    answers.add(None, None)

    with pytest.raises(InstallError):
        hcd.get_hcd_credentials(session)
    assert not session.config.has(HCD_USERNAME)


def test_credentials_opens_shell(session, kube, shell, answers, project) -> None:
    kube.secrets[project] = {"hcd-superuser": {"username": "u", "password": "p"}}
    kube.pods[project] = ["hcd-dc1-rack1-sts-0"]
    answers.add(True)

    hcd.get_hcd_credentials(session)

    assert shell.calls == [[
        "kubectl", "exec", "-it", "hcd-dc1-rack1-sts-0", "-n", project, "--", "bash",
    ]]


def test_post_install_return(session, answers) -> None:
    answers.add("4")
    hcd.hcd_post_installation(session)
    assert answers.queue == []


def test_post_install_both(monkeypatch, session, answers) -> None:
    called = []
    monkeypatch.setattr(hcd, "expose_data_api", lambda s: called.append("expose"))
    monkeypatch.setattr(hcd, "get_hcd_credentials", lambda s: called.append("credentials"))
    answers.add("3")

    hcd.hcd_post_installation(session)

    assert called == ["expose", "credentials"]
