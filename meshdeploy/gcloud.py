"""gcloud wrapper: project lookup, API enablement and GKE cluster lifecycle."""

from __future__ import annotations

import logging
from typing import Any

from .models import ClusterSpec, Environment
from .runner import CommandRunner

logger = logging.getLogger(__name__)

UNSET = "(unset)"


class Gcloud:
    def __init__(self, runner: CommandRunner):
        self.runner = runner

    def config_value(self, key: str) -> str:
        """Return ``gcloud config get-value KEY``; unset values come back empty."""
        result = self.runner.run(["gcloud", "config", "get-value", key], check=False)
        value = (result.stdout or "").strip()
        if result.returncode != 0 or value == UNSET:
            return ""
        return value

    def project_id(self) -> str:
        return self.config_value("project")

    def account(self) -> str:
        return self.config_value("core/account")

    def project_number(self, project_id: str) -> str:
        return self.runner.output(
            [
                "gcloud",
                "projects",
                "describe",
                project_id,
                "--format=value(projectNumber)",
            ]
        )

    def project_roles(self, project_id: str, member: str) -> list[str]:
        """Roles bound directly to ``member`` (e.g. ``user:me@example.com``)."""
        raw = self.runner.output(
            [
                "gcloud",
                "projects",
                "get-iam-policy",
                project_id,
                "--flatten=bindings[].members",
                f"--filter=bindings.members:{member}",
                "--format=value(bindings.role)",
            ]
        )
        return [line.strip() for line in raw.splitlines() if line.strip()]

    def enable_service(self, api: str) -> None:
        self.runner.run(["gcloud", "services", "enable", api, "--quiet"])

    def set_compute_zone(self, zone: str) -> None:
        self.runner.run(["gcloud", "config", "set", "compute/zone", zone])

    def create_cluster(self, spec: ClusterSpec, env: Environment) -> None:
        cmd = ["gcloud", "container", "clusters", "create", env.CLUSTER_NAME]
        cmd.extend(spec.gcloud_flags(env))
        self.runner.run(cmd)

    def get_credentials(self, env: Environment) -> None:
        self.runner.run(
            [
                "gcloud",
                "container",
                "clusters",
                "get-credentials",
                env.CLUSTER_NAME,
                "--zone",
                env.CLUSTER_ZONE,
                "--project",
                env.PROJECT_ID,
            ]
        )

    def describe_cluster(self, env: Environment) -> dict[str, Any]:
        data = self.runner.json(
            [
                "gcloud",
                "container",
                "clusters",
                "describe",
                env.CLUSTER_NAME,
                "--zone",
                env.CLUSTER_ZONE,
                "--project",
                env.PROJECT_ID,
                "--format=json(name,status,currentMasterVersion,currentNodeCount,resourceLabels)",
            ]
        )
        return data if isinstance(data, dict) else {}

    def delete_cluster(self, env: Environment) -> None:
        self.runner.run(
            [
                "gcloud",
                "container",
                "clusters",
                "delete",
                env.CLUSTER_NAME,
                "--zone",
                env.CLUSTER_ZONE,
                "--project",
                env.PROJECT_ID,
                "--quiet",
            ]
        )
