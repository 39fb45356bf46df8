"""Shared httpx client construction."""

from __future__ import annotations

import httpx

from . import __version__

DEFAULT_HEADERS = {"user-agent": f"meshdeploy/{__version__}"}


def make_client(timeout: float, **kwargs) -> httpx.Client:
    """Return an ``httpx.Client`` carrying the meshdeploy User-Agent."""
    return httpx.Client(timeout=timeout, headers=DEFAULT_HEADERS, **kwargs)
