"""kubectl wrapper used by the mesh and Bookinfo steps."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from .runner import CommandRunner

logger = logging.getLogger(__name__)

REVISION_LABEL = "istio.io/rev"


def _scope(namespace: str | None, selector: str | None) -> list[str]:
    args: list[str] = []
    if namespace:
        args.extend(["-n", namespace])
    if selector:
        args.extend(["-l", selector])
    return args


class Kubectl:
    def __init__(self, runner: CommandRunner):
        self.runner = runner

    def is_connected(self) -> bool:
        return self.runner.run(["kubectl", "cluster-info"], check=False).returncode == 0

    def cluster_info(self) -> str:
        return self.runner.output(["kubectl", "cluster-info"])

    def current_context(self) -> str:
        return self.runner.output(["kubectl", "config", "current-context"])

    def apply_file(self, path: Path | str, *, namespace: str | None = None) -> None:
        self.runner.run(["kubectl", "apply", *_scope(namespace, None), "-f", str(path)])

    def delete_file(self, path: Path | str, *, namespace: str | None = None) -> None:
        self.runner.run(
            [
                "kubectl",
                "delete",
                *_scope(namespace, None),
                "-f",
                str(path),
                "--ignore-not-found",
            ]
        )

    def apply_manifest(self, manifest: str) -> None:
        self.runner.run(["kubectl", "apply", "-f", "-"], input=manifest)

    def _apply_dry_run(self, create_cmd: list[str]) -> None:
        # create --dry-run | apply keeps the object creation idempotent.
        manifest = self.runner.output([*create_cmd, "--dry-run=client", "-o", "yaml"])
        self.apply_manifest(manifest)

    def ensure_namespace(self, name: str) -> None:
        self._apply_dry_run(["kubectl", "create", "namespace", name])

    def ensure_cluster_admin_binding(self, user: str, name: str = "cluster-admin-binding") -> None:
        self._apply_dry_run(
            [
                "kubectl",
                "create",
                "clusterrolebinding",
                name,
                "--clusterrole=cluster-admin",
                f"--user={user}",
            ]
        )

    def label_namespace(self, namespace: str, labels: dict[str, str]) -> None:
        pairs = [f"{k}={v}" for k, v in labels.items()]
        self.runner.run(["kubectl", "label", "namespace", namespace, *pairs, "--overwrite"])

    def get_json(
        self,
        kind: str,
        name: str | None = None,
        *,
        namespace: str | None = None,
        selector: str | None = None,
    ) -> dict[str, Any]:
        cmd = ["kubectl", "get", kind]
        if name:
            cmd.append(name)
        cmd.extend([*_scope(namespace, selector), "-o", "json"])
        data = self.runner.json(cmd)
        return data if isinstance(data, dict) else {}

    def get_text(
        self, kind: str, *, namespace: str | None = None, selector: str | None = None
    ) -> str:
        return self.runner.output(["kubectl", "get", kind, *_scope(namespace, selector)])

    def mesh_revisions(self, namespace: str = "istio-system") -> list[str]:
        """Revision labels of the istiod deployments, sorted."""
        data = self.get_json("deploy", namespace=namespace, selector="app=istiod")
        revisions = set()
        for item in data.get("items") or []:
            labels = (item.get("metadata") or {}).get("labels") or {}
            rev = str(labels.get(REVISION_LABEL) or "").strip()
            if rev:
                revisions.add(rev)
        return sorted(revisions)

    def mesh_revision(self, namespace: str = "istio-system") -> str:
        revisions = self.mesh_revisions(namespace)
        if not revisions:
            return ""
        if len(revisions) > 1:
            logger.warning(
                f"Multiple istiod revisions found ({', '.join(revisions)}); using {revisions[-1]}"
            )
        return revisions[-1]

    def wait_for(
        self,
        resource: str,
        *,
        condition: str,
        timeout_seconds: int,
        namespace: str | None = None,
        selector: str | None = None,
    ) -> None:
        cmd = ["kubectl", "wait", f"--for=condition={condition}", f"--timeout={timeout_seconds}s"]
        cmd.append(resource)
        cmd.extend(_scope(namespace, selector))
        self.runner.run(cmd)

    def first_pod_name(self, selector: str, *, namespace: str | None = None) -> str:
        result = self.runner.run(
            [
                "kubectl",
                "get",
                "pod",
                *_scope(namespace, selector),
                "-o",
                "jsonpath={.items[0].metadata.name}",
            ],
            check=False,
        )
        if result.returncode != 0:
            return ""
        return (result.stdout or "").strip()

    def exec_in_pod(
        self, pod: str, command: list[str], *, container: str | None = None
    ) -> str:
        cmd = ["kubectl", "exec", pod]
        if container:
            cmd.extend(["-c", container])
        cmd.extend(["--", *command])
        result = self.runner.run(cmd, check=False)
        return result.stdout or ""

    def service_ingress(self, name: str, namespace: str) -> tuple[str, str]:
        """Return the (ip, hostname) of a LoadBalancer service's first ingress."""
        service = self.get_json("svc", name, namespace=namespace)
        ingress = ((service.get("status") or {}).get("loadBalancer") or {}).get("ingress") or []
        if not ingress or not isinstance(ingress[0], dict):
            return "", ""
        first = ingress[0]
        return str(first.get("ip") or "").strip(), str(first.get("hostname") or "").strip()

    def pod_phases(self, selector: str, *, namespace: str | None = None) -> dict[str, str]:
        data = self.get_json("pods", namespace=namespace, selector=selector)
        phases: dict[str, str] = {}
        for item in data.get("items") or []:
            name = str((item.get("metadata") or {}).get("name") or "")
            if name:
                phases[name] = str((item.get("status") or {}).get("phase") or "Unknown")
        return phases
