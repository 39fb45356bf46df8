"""Read-only inventory of the cluster, mesh and Bookinfo deployment."""

from __future__ import annotations

import logging

from .bookinfo import BOOKINFO_APPS, app_selector
from .gcloud import Gcloud
from .kubectl import Kubectl
from .models import StatusReport
from .runner import CommandRunner
from .settings import Workspace, get_setting, load_environment

logger = logging.getLogger(__name__)


def collect_status(workspace: Workspace, runner: CommandRunner) -> StatusReport:
    env = load_environment(workspace.env_file)
    gcloud = Gcloud(runner)
    kubectl = Kubectl(runner)
    report = StatusReport()

    try:
        report.cluster_status = str(gcloud.describe_cluster(env).get("status") or "") or None
    except Exception as exc:
        report.errors.append(f"cluster: {exc}")

    if not kubectl.is_connected():
        report.errors.append("kubectl is not connected to a cluster")
        return report

    try:
        report.context = kubectl.current_context()
        report.mesh_revision = kubectl.mesh_revision() or None
        ip, hostname = kubectl.service_ingress(
            get_setting("mesh.ingress_service"), get_setting("mesh.ingress_service_namespace")
        )
        report.gateway_address = ip or hostname or env.GATEWAY_URL
        report.bookinfo_pods = kubectl.pod_phases(app_selector(BOOKINFO_APPS))
    except Exception as exc:
        report.errors.append(f"kubernetes: {exc}")
    return report
