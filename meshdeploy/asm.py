"""Cloud Service Mesh installation via asmcli.

Downloads asmcli, validates and installs the managed control plane, then sets
up the revisioned ingress gateway and waits for its load-balancer address.
"""

from __future__ import annotations

import logging
import stat
import threading
from datetime import datetime
from pathlib import Path

import httpx

from .errors import MeshDeployError, PrerequisiteError
from .gcloud import Gcloud
from .httpclient import make_client
from .kubectl import Kubectl
from .models import Environment, MeshInstallResult
from .runner import CommandRunner
from .settings import (
    Workspace,
    get_setting,
    get_setting_float,
    get_setting_int,
    load_environment,
)
from .waiter import WaitResult, wait_until

logger = logging.getLogger(__name__)

MESH_API = "mesh.googleapis.com"
CONTROL_PLANE_NAMESPACE = "istio-system"
GATEWAY_DEPLOYMENT = "istio-ingressgateway"
GATEWAY_SAMPLES = Path("samples") / "gateways" / "istio-ingressgateway"


def asmcli_url(version: str | None = None) -> str:
    version = version or get_setting("mesh.asm_version")
    return get_setting("mesh.asmcli_url").format(version=version)


def backup_existing(path: Path, now: datetime | None = None) -> Path | None:
    """Move ``path`` aside as ``<name>.backup.<YYYYmmdd_HHMMSS>``."""
    if not path.exists():
        return None
    stamp = (now or datetime.now()).strftime("%Y%m%d_%H%M%S")
    backup = path.with_name(f"{path.name}.backup.{stamp}")
    path.rename(backup)
    return backup


def download_asmcli(
    dest: Path,
    url: str,
    *,
    client: httpx.Client | None = None,
    timeout: float = 60.0,
) -> Path:
    """Fetch asmcli to ``dest`` and mark it executable."""
    backup = backup_existing(dest)
    if backup is not None:
        logger.info(f"asmcli already exists, backed up to {backup.name}")

    owns_client = client is None
    if client is None:
        client = make_client(timeout, follow_redirects=True)
    partial = dest.with_name(f"{dest.name}.part")
    try:
        with client.stream("GET", url) as response:
            response.raise_for_status()
            with partial.open("wb") as f:
                for chunk in response.iter_bytes():
                    f.write(chunk)
    except httpx.HTTPError as exc:
        partial.unlink(missing_ok=True)
        raise MeshDeployError(f"asmcli download from {url} failed: {exc}") from exc
    finally:
        if owns_client:
            client.close()

    partial.replace(dest)
    mode = dest.stat().st_mode
    dest.chmod(mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return dest


def asmcli_args(
    asmcli: Path, subcommand: str, env: Environment, output_dir: Path
) -> list[str]:
    cmd = [
        str(asmcli),
        subcommand,
        "--project_id",
        env.PROJECT_ID,
        "--cluster_name",
        env.CLUSTER_NAME,
        "--cluster_location",
        env.CLUSTER_ZONE,
        "--fleet_id",
        env.PROJECT_ID,
        "--output_dir",
        str(output_dir),
    ]
    if subcommand == "install":
        cmd.extend(
            [
                "--enable_all",
                "--option",
                "legacy-default-ingressgateway",
                "--ca",
                get_setting("mesh.ca"),
                "--enable_gcp_components",
            ]
        )
    return cmd


def render_install_info(result: MeshInstallResult) -> str:
    lines = [
        f"ASM Installation completed at: {result.completed_at.isoformat()}",
        f"Revision: {result.revision}",
        f"Gateway Namespace: {result.gateway_namespace}",
    ]
    if result.external_ip:
        lines.append(f"Gateway External IP: {result.external_ip}")
    return "\n".join(lines) + "\n"


class MeshInstaller:
    """Runs the mesh install step end to end."""

    def __init__(
        self,
        workspace: Workspace,
        runner: CommandRunner,
        *,
        http_client: httpx.Client | None = None,
        cancel: threading.Event | None = None,
    ):
        self.workspace = workspace
        self.runner = runner
        self.http_client = http_client
        self.cancel = cancel
        self.gcloud = Gcloud(runner)
        self.kubectl = Kubectl(runner)
        self.gateway_namespace = get_setting("mesh.gateway_namespace")

    def _asmcli(self, subcommand: str, env: Environment) -> None:
        self.runner.run(
            asmcli_args(self.workspace.asmcli, subcommand, env, self.workspace.asm_output),
            cwd=self.workspace.root,
        )

    def _log_control_plane(self) -> None:
        ns = CONTROL_PLANE_NAMESPACE
        logger.info(self.runner.output(["kubectl", "get", "namespace", ns]))
        logger.info(f"ASM control plane pods:\n{self.kubectl.get_text('pods', namespace=ns)}")
        logger.info(f"ASM services:\n{self.kubectl.get_text('svc', namespace=ns)}")

    def setup_gateway(self) -> str:
        """Label namespaces for the mesh revision and deploy the ingress gateway."""
        ns = self.gateway_namespace
        self.kubectl.ensure_namespace(ns)

        revision = self.kubectl.mesh_revision(CONTROL_PLANE_NAMESPACE)
        if not revision:
            raise MeshDeployError(
                f"No istiod revision label found in {CONTROL_PLANE_NAMESPACE}; is the mesh installed?"
            )
        logger.info(f"Istio revision: {revision}")

        self.kubectl.label_namespace(ns, {"istio.io/rev": revision})
        self.kubectl.label_namespace("default", {"istio-injection": "enabled"})
        self.kubectl.label_namespace(ns, {"istio-injection": "enabled"})

        logger.info("Deploying Istio Ingress Gateway...")
        self.kubectl.apply_file(self.workspace.asm_output / GATEWAY_SAMPLES, namespace=ns)
        logger.info("Istio Ingress Gateway deployed")

        self.kubectl.label_namespace("default", {"istio.io/rev": revision})
        logger.info("Sidecar injection enabled for default namespace")
        return revision

    def wait_for_external_ip(self) -> WaitResult:
        attempts = get_setting_int("wait.external_ip_attempts", minimum=1)
        service = get_setting("mesh.ingress_service")
        namespace = get_setting("mesh.ingress_service_namespace")

        def _progress(attempt: int, _value) -> None:
            logger.info(f"Waiting for external IP... (attempt {attempt}/{attempts})")

        return wait_until(
            lambda: self.kubectl.service_ingress(service, namespace)[0],
            interval=get_setting_float("wait.external_ip_interval_seconds"),
            max_attempts=attempts,
            cancel=self.cancel,
            on_attempt=_progress,
        )

    def run(self) -> MeshInstallResult:
        logger.info("Starting Cloud Service Mesh installation...")
        env = load_environment(self.workspace.env_file)
        logger.info("Environment variables loaded")

        if not self.kubectl.is_connected():
            raise PrerequisiteError("kubectl is not connected to a cluster. Please run setup first.")
        logger.info(f"Connected to cluster: {self.kubectl.current_context()}")

        url = asmcli_url()
        logger.info(f"Downloading asmcli from {url}...")
        download_asmcli(
            self.workspace.asmcli,
            url,
            client=self.http_client,
            timeout=get_setting_float("wait.http_timeout_seconds"),
        )
        logger.info("asmcli downloaded and made executable")

        self.gcloud.enable_service(MESH_API)
        logger.info("Service Mesh API enabled")

        logger.info("Validating ASM installation prerequisites (this may take a few minutes)...")
        self._asmcli("validate", env)
        logger.info("ASM validation completed")

        logger.info("Installing Cloud Service Mesh (this will take several minutes)...")
        self._asmcli("install", env)
        logger.info("Cloud Service Mesh installed successfully")

        self._log_control_plane()
        revision = self.setup_gateway()

        logger.info("Waiting for ingress gateway to be ready...")
        self.kubectl.wait_for(
            f"deployment/{GATEWAY_DEPLOYMENT}",
            condition="available",
            timeout_seconds=get_setting_int("wait.rollout_timeout_seconds"),
            namespace=self.gateway_namespace,
        )

        waited = self.wait_for_external_ip()
        if waited.cancelled:
            waited.raise_for_timeout("Ingress external IP")
        external_ip = waited.value if waited.ready else None
        if external_ip:
            logger.info(f"Ingress gateway external IP: {external_ip}")
            self.workspace.env_file.append("GATEWAY_URL", external_ip)
        else:
            logger.warning(
                "External IP not yet assigned. Check later with: "
                f"kubectl get svc {get_setting('mesh.ingress_service')} "
                f"-n {get_setting('mesh.ingress_service_namespace')}"
            )

        result = MeshInstallResult(
            status="installed" if external_ip else "installed-pending-ip",
            revision=revision,
            gateway_namespace=self.gateway_namespace,
            external_ip=external_ip,
            ip_attempts=waited.attempts,
        )
        self.workspace.asm_info.write_text(render_install_info(result))
        logger.info(f"Installation information saved to {self.workspace.asm_info}")
        return result
