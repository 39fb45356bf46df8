"""Remove the Bookinfo sample and, optionally, the cluster itself."""

from __future__ import annotations

import logging
from collections.abc import Callable

from .bookinfo import BOOKINFO_MANIFEST, GATEWAY_MANIFEST, find_istio_dir
from .errors import MeshDeployError
from .gcloud import Gcloud
from .kubectl import Kubectl
from .models import TeardownResult
from .runner import CommandRunner
from .settings import Workspace, load_environment

logger = logging.getLogger(__name__)


def teardown(
    workspace: Workspace,
    runner: CommandRunner,
    *,
    delete_cluster: bool = False,
    dry_run: bool = False,
) -> TeardownResult:
    """Delete what the deploy steps created.

    Each action is attempted independently; failures are collected in the
    result instead of aborting the remaining actions.
    """
    env = load_environment(workspace.env_file)
    kubectl = Kubectl(runner)
    gcloud = Gcloud(runner)

    actions: list[tuple[str, Callable[[], None]]] = []
    try:
        istio_dir = find_istio_dir(workspace.asm_output)
    except MeshDeployError as exc:
        logger.warning(f"Skipping Bookinfo removal: {exc}")
    else:
        # Gateway first so traffic stops before the workloads go away.
        for manifest in (GATEWAY_MANIFEST, BOOKINFO_MANIFEST):
            path = istio_dir / manifest
            actions.append((f"kubectl delete -f {path}", lambda p=path: kubectl.delete_file(p)))

    if delete_cluster:
        actions.append(
            (
                f"gcloud container clusters delete {env.CLUSTER_NAME} --zone {env.CLUSTER_ZONE}",
                lambda: gcloud.delete_cluster(env),
            )
        )

    result = TeardownResult(dry_run=dry_run, actions=[label for label, _ in actions])
    for label, action in actions:
        if dry_run:
            logger.info(f"[dry-run] {label}")
            continue
        logger.info(label)
        try:
            action()
            result.completed.append(label)
        except Exception as exc:
            result.errors.append(f"{label}: {exc}")
    return result
