"""Istio Bookinfo sample deployment and connectivity checks."""

from __future__ import annotations

import logging
import re
import threading
from datetime import datetime, timezone
from pathlib import Path

import httpx

from .errors import PrerequisiteError
from .httpclient import make_client
from .kubectl import Kubectl
from .models import PENDING_ADDRESS, BookinfoResult
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

BOOKINFO_APPS = ("productpage", "details", "ratings", "reviews")
BOOKINFO_MANIFEST = Path("samples") / "bookinfo" / "platform" / "kube" / "bookinfo.yaml"
GATEWAY_MANIFEST = Path("samples") / "bookinfo" / "networking" / "bookinfo-gateway.yaml"
EXPECTED_TITLE = "Simple Bookstore App"

_TITLE_RE = re.compile(r"<title>(.*?)</title>", re.IGNORECASE | re.DOTALL)

SERVICE_DESCRIPTIONS = {
    "productpage": "Main application frontend",
    "details": "Book details service",
    "reviews": "Book reviews service (3 versions)",
    "ratings": "Book ratings service",
}


def find_istio_dir(asm_output: Path) -> Path:
    """Return the newest ``istio-*`` release directory under asm_output."""
    if not asm_output.is_dir():
        raise PrerequisiteError(
            f"ASM output directory not found ({asm_output}). Please run install-asm first."
        )
    candidates = sorted(p for p in asm_output.glob("istio-*") if p.is_dir())
    if not candidates:
        raise PrerequisiteError(f"Istio directory not found in {asm_output}")
    return candidates[-1]


def page_title(html: str) -> str:
    match = _TITLE_RE.search(html or "")
    return match.group(1).strip() if match else ""


def app_selector(apps=BOOKINFO_APPS) -> str:
    return f"app in ({','.join(apps)})"


def render_access_info(
    gateway_url: str, istio_dir: Path, generated_at: datetime | None = None
) -> str:
    generated_at = generated_at or datetime.now(timezone.utc)
    url = f"http://{gateway_url}/productpage"
    services = "\n".join(f"- {name}: {desc}" for name, desc in SERVICE_DESCRIPTIONS.items())
    return f"""Bookinfo Application Access Information
======================================

Generated: {generated_at.isoformat()}

Application URL: {url}

Services:
{services}

To access the application:
1. Open your web browser
2. Navigate to: {url}
3. Refresh the page multiple times to see different review versions

Load Testing:
sudo apt install siege
siege {url}

Monitoring:
- Access Cloud Service Mesh dashboard in GCP Console
- Go to Anthos > Service Mesh
- Select your cluster to view metrics

Cleanup:
kubectl delete -f {istio_dir / BOOKINFO_MANIFEST}
kubectl delete -f {istio_dir / GATEWAY_MANIFEST}
"""


class BookinfoDeployer:
    """Runs the Bookinfo deploy step end to end."""

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
        self.kubectl = Kubectl(runner)

    def wait_for_pods(self) -> None:
        timeout = get_setting_int("wait.rollout_timeout_seconds")
        for app in BOOKINFO_APPS:
            self.kubectl.wait_for(
                "pod", condition="ready", timeout_seconds=timeout, selector=f"app={app}"
            )
        logger.info("All application pods are ready")

    def check_internal(self) -> bool:
        """Fetch the product page from inside the mesh (ratings pod)."""
        pod = self.kubectl.first_pod_name("app=ratings")
        if not pod:
            logger.warning("Could not find ratings pod for connectivity test")
            return False
        html = self.kubectl.exec_in_pod(
            pod,
            ["curl", "-s", "productpage:9080/productpage"],
            container="ratings",
        )
        if page_title(html) == EXPECTED_TITLE:
            logger.info("Internal connectivity test passed")
            return True
        logger.warning("Internal connectivity test failed or incomplete")
        return False

    def gateway_address(self) -> str:
        ip, hostname = self.kubectl.service_ingress(
            get_setting("mesh.ingress_service"), get_setting("mesh.ingress_service_namespace")
        )
        if ip:
            logger.info(f"External IP: {ip}")
            return ip
        if hostname:
            logger.info(f"External Hostname: {hostname}")
            return hostname
        logger.warning("External IP/Hostname not yet assigned")
        return PENDING_ADDRESS

    def check_external(self, gateway_url: str) -> WaitResult:
        """Poll the product page through the ingress gateway until HTTP 200."""
        url = f"http://{gateway_url}/productpage"
        attempts = get_setting_int("wait.http_attempts", minimum=1)
        owns_client = self.http_client is None
        client = self.http_client or make_client(get_setting_float("wait.http_timeout_seconds"))

        def _status() -> str:
            try:
                return str(client.get(url).status_code)
            except httpx.HTTPError:
                return "000"

        def _progress(attempt: int, _value) -> None:
            logger.info(f"Waiting for external connectivity... (attempt {attempt}/{attempts})")

        try:
            return wait_until(
                _status,
                interval=get_setting_float("wait.http_interval_seconds"),
                max_attempts=attempts,
                predicate=lambda status: status == "200",
                cancel=self.cancel,
                on_attempt=_progress,
            )
        finally:
            if owns_client:
                client.close()

    def run(self) -> BookinfoResult:
        logger.info("Starting Bookinfo application deployment...")
        load_environment(self.workspace.env_file)
        logger.info("Environment variables loaded")

        istio_dir = find_istio_dir(self.workspace.asm_output)
        logger.info(f"Using Istio directory: {istio_dir.name}")

        if not self.kubectl.is_connected():
            raise PrerequisiteError("kubectl is not connected to a cluster")
        logger.info(f"Connected to cluster: {self.kubectl.current_context()}")

        self.kubectl.apply_file(istio_dir / BOOKINFO_MANIFEST)
        logger.info("Bookinfo application deployed")

        logger.info("Waiting for application pods to be ready...")
        self.wait_for_pods()
        logger.info(f"Application pod status:\n{self.kubectl.get_text('pods', selector=app_selector())}")

        self.kubectl.apply_file(istio_dir / GATEWAY_MANIFEST)
        logger.info("Bookinfo gateway configured")
        logger.info(f"Gateways:\n{self.kubectl.get_text('gateway')}")
        logger.info(f"Virtual services:\n{self.kubectl.get_text('virtualservice')}")

        internal_ok = self.check_internal()
        gateway_url = self.gateway_address()

        result = BookinfoResult(
            istio_dir=str(istio_dir),
            gateway_url=gateway_url,
            internal_check_passed=internal_ok,
        )
        if not result.address_pending:
            waited = self.check_external(gateway_url)
            if waited.cancelled:
                waited.raise_for_timeout("Product page check")
            result.external_http_status = waited.value
            result.external_check_passed = waited.ready
            if waited.ready:
                logger.info("External connectivity test passed")
            else:
                logger.warning(
                    f"External connectivity test failed (HTTP {waited.value}); "
                    "the application may still be starting up"
                )
        else:
            result.status = "deployed-pending-address"

        self.workspace.bookinfo_info.write_text(render_access_info(gateway_url, istio_dir))
        logger.info(f"Access information saved to {self.workspace.bookinfo_info}")
        if result.address_pending:
            logger.warning(
                "External IP is still pending. Check with: kubectl get svc "
                f"{get_setting('mesh.ingress_service')} -n {get_setting('mesh.ingress_service_namespace')}"
            )
        else:
            logger.info(f"Application URL: {result.app_url}")
        return result
