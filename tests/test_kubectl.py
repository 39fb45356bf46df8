"""Tests for the kubectl wrapper."""

import json

from meshdeploy.kubectl import Kubectl

NAMESPACE_YAML = "apiVersion: v1\nkind: Namespace\nmetadata:\n  name: istio-gateway\n"


def _deploy(rev: str | None) -> dict:
    labels = {"app": "istiod"}
    if rev:
        labels["istio.io/rev"] = rev
    return {"metadata": {"name": f"istiod-{rev or 'default'}", "labels": labels}}


def test_is_connected(runner):
    assert Kubectl(runner).is_connected()
    runner.on("kubectl", "cluster-info", returncode=1, stderr="no context")
    assert not Kubectl(runner).is_connected()


def test_ensure_namespace_pipes_dry_run_into_apply(runner):
    runner.on("kubectl", "create", "namespace", stdout=NAMESPACE_YAML)

    Kubectl(runner).ensure_namespace("istio-gateway")

    assert runner.calls == [
        ["kubectl", "create", "namespace", "istio-gateway", "--dry-run=client", "-o", "yaml"],
        ["kubectl", "apply", "-f", "-"],
    ]
    assert runner.inputs[-1] == NAMESPACE_YAML.strip()


def test_cluster_admin_binding(runner):
    Kubectl(runner).ensure_cluster_admin_binding("dev@example.com")
    assert runner.calls[0] == [
        "kubectl",
        "create",
        "clusterrolebinding",
        "cluster-admin-binding",
        "--clusterrole=cluster-admin",
        "--user=dev@example.com",
        "--dry-run=client",
        "-o",
        "yaml",
    ]


def test_label_namespace_overwrites(runner):
    Kubectl(runner).label_namespace("default", {"istio.io/rev": "asm-managed"})
    assert runner.calls[-1] == [
        "kubectl",
        "label",
        "namespace",
        "default",
        "istio.io/rev=asm-managed",
        "--overwrite",
    ]


def test_mesh_revision(runner):
    payload = {"items": [_deploy("asm-1203-3"), _deploy(None)]}
    runner.on("kubectl", "get", "deploy", stdout=json.dumps(payload))

    kubectl = Kubectl(runner)
    assert kubectl.mesh_revision() == "asm-1203-3"
    assert runner.calls[-1] == [
        "kubectl",
        "get",
        "deploy",
        "-n",
        "istio-system",
        "-l",
        "app=istiod",
        "-o",
        "json",
    ]


def test_mesh_revision_picks_last_of_several(runner):
    payload = {"items": [_deploy("asm-1203-3"), _deploy("asm-1191-1")]}
    runner.on("kubectl", "get", "deploy", stdout=json.dumps(payload))
    assert Kubectl(runner).mesh_revisions() == ["asm-1191-1", "asm-1203-3"]
    assert Kubectl(runner).mesh_revision() == "asm-1203-3"


def test_mesh_revision_none(runner):
    runner.on("kubectl", "get", "deploy", stdout='{"items": []}')
    assert Kubectl(runner).mesh_revision() == ""


def test_wait_for(runner):
    Kubectl(runner).wait_for(
        "deployment/istio-ingressgateway",
        condition="available",
        timeout_seconds=300,
        namespace="istio-gateway",
    )
    assert runner.calls[-1] == [
        "kubectl",
        "wait",
        "--for=condition=available",
        "--timeout=300s",
        "deployment/istio-ingressgateway",
        "-n",
        "istio-gateway",
    ]


def test_service_ingress(runner):
    svc = {
        "spec": {"clusterIP": "10.0.0.5"},
        "status": {"loadBalancer": {"ingress": [{"ip": "34.1.2.3"}]}},
    }
    runner.on("kubectl", "get", "svc", stdout=json.dumps(svc))
    assert Kubectl(runner).service_ingress("istio-ingressgateway", "istio-system") == (
        "34.1.2.3",
        "",
    )

    runner.on("kubectl", "get", "svc", stdout=json.dumps({"status": {"loadBalancer": {}}}))
    assert Kubectl(runner).service_ingress("istio-ingressgateway", "istio-system") == ("", "")

    svc = {"status": {"loadBalancer": {"ingress": [{"hostname": "lb.example.com"}]}}}
    runner.on("kubectl", "get", "svc", stdout=json.dumps(svc))
    assert Kubectl(runner).service_ingress("istio-ingressgateway", "istio-system") == (
        "",
        "lb.example.com",
    )


def test_first_pod_name_and_exec(runner):
    runner.on("kubectl", "get", "pod", stdout="ratings-v1-abc")
    runner.on("kubectl", "exec", stdout="<html>", returncode=1)

    kubectl = Kubectl(runner)
    pod = kubectl.first_pod_name("app=ratings")
    assert pod == "ratings-v1-abc"
    assert kubectl.exec_in_pod(pod, ["curl", "-s", "x"], container="ratings") == "<html>"
    assert runner.calls[-1] == [
        "kubectl",
        "exec",
        "ratings-v1-abc",
        "-c",
        "ratings",
        "--",
        "curl",
        "-s",
        "x",
    ]


def test_first_pod_name_missing(runner):
    runner.on("kubectl", "get", "pod", returncode=1, stderr="array index out of bounds")
    assert Kubectl(runner).first_pod_name("app=ratings") == ""


def test_pod_phases(runner):
    pods = {
        "items": [
            {"metadata": {"name": "details-v1-x"}, "status": {"phase": "Running"}},
            {"metadata": {"name": "reviews-v2-y"}, "status": {}},
        ]
    }
    runner.on("kubectl", "get", "pods", stdout=json.dumps(pods))
    assert Kubectl(runner).pod_phases("app in (details,reviews)") == {
        "details-v1-x": "Running",
        "reviews-v2-y": "Unknown",
    }
