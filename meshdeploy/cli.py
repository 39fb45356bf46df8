#!/usr/bin/env python3
"""Provision GKE, install Cloud Service Mesh and deploy Bookinfo.

Commands run the same gcloud/kubectl/asmcli sequence as the manual setup
guide, one step per subcommand:
- setup: project environment, APIs, cluster, credentials
- install-asm: asmcli install, ingress gateway, external IP
- deploy-bookinfo: sample app, gateway, connectivity checks
- up: all three in order
- status / teardown: inventory and cleanup
"""

from __future__ import annotations

import argparse
import json
import logging
import signal
import sys
import threading
from contextlib import contextmanager
from pathlib import Path

from . import __version__
from .asm import MeshInstaller
from .bookinfo import BookinfoDeployer
from .cluster import ClusterProvisioner
from .runner import CommandRunner
from .settings import Workspace, log_settings_sources, use_environment_file
from .status import collect_status
from .teardown import teardown

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_PENDING = 2
EXIT_PARTIAL = 3


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="meshdeploy",
        description="Provision GKE with Cloud Service Mesh and the Bookinfo sample",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--workdir",
        type=Path,
        default=Path.cwd(),
        help="Directory holding configs/, asm_output/ and the info files",
    )
    parser.add_argument(
        "--log-level",
        default="info",
        choices=["debug", "info", "warning", "error"],
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("setup", help="Configure the project and create the GKE cluster")
    sub.add_parser("install-asm", help="Install Cloud Service Mesh and the ingress gateway")
    sub.add_parser("deploy-bookinfo", help="Deploy the Bookinfo sample application")
    sub.add_parser("up", help="Run setup, install-asm and deploy-bookinfo in order")
    sub.add_parser("status", help="Show cluster, mesh and Bookinfo status")

    down = sub.add_parser("teardown", help="Remove Bookinfo and optionally the cluster")
    down.add_argument("--delete-cluster", action="store_true")
    down.add_argument("--dry-run", action="store_true")
    return parser


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(message)s",
        stream=sys.stderr,
    )


def _emit(payload: dict) -> None:
    print(json.dumps(payload, indent=2, default=str))


@contextmanager
def _cancel_on_signals(cancel: threading.Event):
    """Set ``cancel`` on the first SIGINT/SIGTERM; a second SIGINT interrupts."""
    if threading.current_thread() is not threading.main_thread():
        yield cancel
        return

    def _handler(signum, _frame):
        if cancel.is_set() and signum == signal.SIGINT:
            raise KeyboardInterrupt
        logger.warning(f"Received {signal.Signals(signum).name}; stopping after the current step")
        cancel.set()

    previous = {sig: signal.signal(sig, _handler) for sig in (signal.SIGINT, signal.SIGTERM)}
    try:
        yield cancel
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.log_level)

    workspace = Workspace(args.workdir.resolve())
    use_environment_file(workspace.env_file)
    log_settings_sources()
    runner = CommandRunner(cwd=workspace.root)

    with _cancel_on_signals(threading.Event()) as cancel:
        return _dispatch(args, workspace, runner, cancel)


def _dispatch(
    args: argparse.Namespace,
    workspace: Workspace,
    runner: CommandRunner,
    cancel: threading.Event,
) -> int:
    if args.command == "setup":
        _emit(ClusterProvisioner(workspace, runner).run().model_dump(mode="json"))
        logger.info("Next step: meshdeploy install-asm")
        return EXIT_OK

    if args.command == "install-asm":
        result = MeshInstaller(workspace, runner, cancel=cancel).run()
        _emit(result.model_dump(mode="json"))
        logger.info("Next step: meshdeploy deploy-bookinfo")
        return EXIT_OK

    if args.command == "deploy-bookinfo":
        result = BookinfoDeployer(workspace, runner, cancel=cancel).run()
        _emit(result.model_dump(mode="json"))
        return EXIT_PENDING if result.address_pending else EXIT_OK

    if args.command == "up":
        setup = ClusterProvisioner(workspace, runner).run()
        mesh = MeshInstaller(workspace, runner, cancel=cancel).run()
        bookinfo = BookinfoDeployer(workspace, runner, cancel=cancel).run()
        _emit(
            {
                "setup": setup.model_dump(mode="json"),
                "mesh": mesh.model_dump(mode="json"),
                "bookinfo": bookinfo.model_dump(mode="json"),
            }
        )
        return EXIT_PENDING if bookinfo.address_pending else EXIT_OK

    if args.command == "status":
        _emit(collect_status(workspace, runner).model_dump(mode="json"))
        return EXIT_OK

    if args.command == "teardown":
        result = teardown(
            workspace, runner, delete_cluster=args.delete_cluster, dry_run=args.dry_run
        )
        _emit(result.model_dump(mode="json"))
        return EXIT_OK if not result.errors else EXIT_PARTIAL

    return EXIT_ERROR


def run() -> None:
    try:
        raise SystemExit(main())
    except Exception as exc:
        print(json.dumps({"status": "error", "detail": str(exc)}), file=sys.stderr)
        raise SystemExit(EXIT_ERROR) from exc


if __name__ == "__main__":
    run()
