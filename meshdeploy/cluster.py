"""Project setup and GKE cluster creation.

Resolves the project identity from gcloud, persists it to the environment
file, enables the APIs the mesh needs and creates a workload-identity enabled
cluster labelled with the mesh ID.
"""

from __future__ import annotations

import logging

from .errors import ConfigError, PrerequisiteError
from .gcloud import Gcloud
from .kubectl import Kubectl
from .models import ClusterSpec, Environment, SetupResult
from .runner import CommandRunner
from .settings import Workspace, get_setting, get_setting_int, save_environment

logger = logging.getLogger(__name__)

REQUIRED_CLIS = ("gcloud", "kubectl")

REQUIRED_APIS = (
    "container.googleapis.com",
    "compute.googleapis.com",
    "monitoring.googleapis.com",
    "logging.googleapis.com",
    "cloudtrace.googleapis.com",
    "meshca.googleapis.com",
    "meshtelemetry.googleapis.com",
    "meshconfig.googleapis.com",
    "iamcredentials.googleapis.com",
    "gkeconnect.googleapis.com",
    "gkehub.googleapis.com",
    "cloudresourcemanager.googleapis.com",
)

SUFFICIENT_ROLES = ("roles/owner", "roles/editor")

ALTERNATIVE_ROLES = (
    "Kubernetes Engine Admin",
    "Project IAM Admin",
    "GKE Hub Admin",
    "Service Account Admin",
)


def check_prerequisites(runner: CommandRunner, programs: tuple[str, ...] = REQUIRED_CLIS) -> None:
    for program in programs:
        if not runner.exists(program):
            raise PrerequisiteError(f"{program} is not installed. Please install it first.")


def cluster_spec_from_settings() -> ClusterSpec:
    return ClusterSpec(
        machine_type=get_setting("cluster.machine_type"),
        num_nodes=get_setting_int("cluster.num_nodes"),
        min_nodes=get_setting_int("cluster.min_nodes"),
        max_nodes=get_setting_int("cluster.max_nodes"),
        subnetwork=get_setting("cluster.subnetwork"),
        release_channel=get_setting("cluster.release_channel"),
    )


def resolve_environment(gcloud: Gcloud) -> Environment:
    project_id = gcloud.project_id()
    if not project_id:
        raise ConfigError(
            "No project is set. Please run: gcloud config set project YOUR_PROJECT_ID"
        )
    return Environment.derive(
        project_id=project_id,
        project_number=gcloud.project_number(project_id),
        cluster_name=get_setting("cluster.name", include_file=False),
        cluster_zone=get_setting("cluster.zone", include_file=False),
    )


def sufficient_role(gcloud: Gcloud, project_id: str, account: str) -> str | None:
    """Return the first owner/editor role bound to ``account``, if any."""
    if not account:
        return None
    try:
        roles = gcloud.project_roles(project_id, f"user:{account}")
    except Exception as exc:
        logger.warning(f"IAM policy lookup failed: {exc}")
        return None
    for role in roles:
        if role in SUFFICIENT_ROLES:
            return role
    return None


class ClusterProvisioner:
    """Runs the setup step end to end."""

    def __init__(self, workspace: Workspace, runner: CommandRunner):
        self.workspace = workspace
        self.runner = runner
        self.gcloud = Gcloud(runner)
        self.kubectl = Kubectl(runner)

    def run(self) -> SetupResult:
        logger.info("Starting Cloud Service Mesh setup...")
        check_prerequisites(self.runner)
        logger.info("Prerequisites check completed")

        env = resolve_environment(self.gcloud)
        save_environment(self.workspace.env_file, env)
        logger.info(f"Environment variables saved to {self.workspace.env_file.path}")
        logger.info(f"Project ID: {env.PROJECT_ID}")
        logger.info(f"Cluster Name: {env.CLUSTER_NAME}")
        logger.info(f"Cluster Zone: {env.CLUSTER_ZONE}")

        account = self.gcloud.account()
        role = sufficient_role(self.gcloud, env.PROJECT_ID, account)
        if role:
            logger.info(f"IAM permissions verified ({role})")
        else:
            logger.warning(
                "Could not verify sufficient permissions. You need Project Owner, Project Editor, "
                f"or the combination of: {', '.join(ALTERNATIVE_ROLES)}"
            )

        for api in REQUIRED_APIS:
            logger.info(f"Enabling {api}...")
            self.gcloud.enable_service(api)
        logger.info("All required APIs enabled")

        self.gcloud.set_compute_zone(env.CLUSTER_ZONE)

        spec = cluster_spec_from_settings()
        logger.info(f"Creating GKE cluster '{env.CLUSTER_NAME}' (this will take several minutes)...")
        self.gcloud.create_cluster(spec, env)
        logger.info("GKE cluster created successfully")

        self.gcloud.get_credentials(env)
        if account:
            self.kubectl.ensure_cluster_admin_binding(account)
            logger.info("Cluster admin binding created")
        else:
            logger.warning("No active gcloud account; skipping cluster admin binding")

        info = self.kubectl.cluster_info()
        self.workspace.cluster_info.write_text(info + "\n")
        logger.info(f"Cluster information saved to {self.workspace.cluster_info}")

        return SetupResult(
            environment=env,
            context=self.kubectl.current_context(),
            iam_role=role,
            enabled_apis=list(REQUIRED_APIS),
        )
