"""Environment-file-backed settings with env-var fallback for meshdeploy.

Resolution order: environment file > env var > default.
All settings are defined in SETTING_DEFS. The environment file is the one the
setup step writes (``configs/environment-vars.sh``); values in it win over the
process environment the same way ``source``-ing it in a shell would.
"""

from __future__ import annotations

import logging
import os
import re
import shlex
import time
from dataclasses import dataclass
from pathlib import Path

from pydantic import ValidationError

from .errors import ConfigError
from .models import Environment

logger = logging.getLogger(__name__)

ENV_FILE_HEADER = "#!/bin/bash"
_EXPORT_RE = re.compile(r"^\s*(?:export\s+)?([A-Za-z_][A-Za-z0-9_]*)=(.*)$")


@dataclass(frozen=True)
class SettingDef:
    """Definition of a single setting."""

    key: str
    env_var: str
    default: str
    description: str
    group: str  # e.g. "cluster", "mesh", "wait"


# ── Registry ─────────────────────────────────────────────────────────────────

SETTING_DEFS: dict[str, SettingDef] = {}


def _reg(key: str, env_var: str, default: str, description: str, group: str):
    SETTING_DEFS[key] = SettingDef(key, env_var, default, description, group)


# Cluster
_reg("cluster.name", "CLUSTER_NAME", "central", "GKE cluster name", "cluster")
_reg("cluster.zone", "CLUSTER_ZONE", "us-central1-a", "GKE cluster zone", "cluster")
_reg(
    "cluster.machine_type",
    "CLUSTER_MACHINE_TYPE",
    "e2-standard-4",
    "Node machine type",
    "cluster",
)
_reg("cluster.num_nodes", "CLUSTER_NUM_NODES", "4", "Initial node count", "cluster")
_reg("cluster.min_nodes", "CLUSTER_MIN_NODES", "2", "Autoscaling lower bound", "cluster")
_reg("cluster.max_nodes", "CLUSTER_MAX_NODES", "6", "Autoscaling upper bound", "cluster")
_reg("cluster.subnetwork", "CLUSTER_SUBNETWORK", "default", "VPC subnetwork", "cluster")
_reg(
    "cluster.release_channel",
    "CLUSTER_RELEASE_CHANNEL",
    "regular",
    "GKE release channel",
    "cluster",
)

# Mesh
_reg("mesh.asm_version", "ASM_VERSION", "1.20", "asmcli release to download", "mesh")
_reg(
    "mesh.asmcli_url",
    "ASMCLI_URL",
    "https://storage.googleapis.com/csm-artifacts/asm/asmcli_{version}",
    "asmcli download URL template ({version} is substituted)",
    "mesh",
)
_reg("mesh.ca", "ASM_CA", "mesh_ca", "Certificate authority passed to asmcli", "mesh")
_reg(
    "mesh.gateway_namespace",
    "GATEWAY_NS",
    "istio-gateway",
    "Namespace the ingress gateway is deployed into",
    "mesh",
)
_reg(
    "mesh.ingress_service",
    "INGRESS_SERVICE",
    "istio-ingressgateway",
    "Ingress gateway service probed for the external address",
    "mesh",
)
_reg(
    "mesh.ingress_service_namespace",
    "INGRESS_SERVICE_NAMESPACE",
    "istio-system",
    "Namespace of the ingress gateway service",
    "mesh",
)

# Waits
_reg(
    "wait.rollout_timeout_seconds",
    "ROLLOUT_TIMEOUT_SECONDS",
    "300",
    "kubectl wait timeout for deployments and pods",
    "wait",
)
_reg(
    "wait.external_ip_attempts",
    "EXTERNAL_IP_ATTEMPTS",
    "10",
    "Polls for the ingress external IP",
    "wait",
)
_reg(
    "wait.external_ip_interval_seconds",
    "EXTERNAL_IP_INTERVAL_SECONDS",
    "30",
    "Seconds between external IP polls",
    "wait",
)
_reg(
    "wait.http_attempts",
    "HTTP_CHECK_ATTEMPTS",
    "5",
    "Polls of the Bookinfo product page",
    "wait",
)
_reg(
    "wait.http_interval_seconds",
    "HTTP_CHECK_INTERVAL_SECONDS",
    "10",
    "Seconds between product page polls",
    "wait",
)
_reg(
    "wait.http_timeout_seconds",
    "HTTP_CHECK_TIMEOUT_SECONDS",
    "10",
    "Per-request timeout for HTTP checks and downloads",
    "wait",
)


# ── Environment file ─────────────────────────────────────────────────────────


class EnvironmentFile:
    """``export KEY=VALUE`` file shared between the deploy steps."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def exists(self) -> bool:
        return self.path.is_file()

    def read(self) -> dict[str, str]:
        """Parse the file; later assignments override earlier ones."""
        values: dict[str, str] = {}
        if not self.exists():
            return values
        for n, line in enumerate(self.path.read_text().splitlines(), start=1):
            if not line.strip() or line.lstrip().startswith("#"):
                continue
            match = _EXPORT_RE.match(line)
            if not match:
                continue
            key, raw = match.groups()
            try:
                parts = shlex.split(raw) if raw.strip() else []
            except ValueError as exc:
                raise ConfigError(f"Invalid line {n} in {self.path}: {exc}") from exc
            values[key] = parts[0] if parts else ""
        return values

    def write(self, values: dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        lines = [ENV_FILE_HEADER]
        lines.extend(f"export {k}={shlex.quote(str(v))}" for k, v in values.items())
        self.path.write_text("\n".join(lines) + "\n")
        invalidate_cache()

    def append(self, key: str, value: str) -> None:
        text = self.path.read_text() if self.exists() else ""
        with self.path.open("a") as f:
            if text and not text.endswith("\n"):
                f.write("\n")
            f.write(f"export {key}={shlex.quote(str(value))}\n")
        invalidate_cache()


def load_environment(env_file: EnvironmentFile) -> Environment:
    """Load and validate the environment written by the setup step."""
    if not env_file.exists():
        raise ConfigError(
            f"Environment variables file not found ({env_file.path}). Please run setup first."
        )
    values = env_file.read()
    fields = Environment.model_fields
    try:
        return Environment(**{k: v for k, v in values.items() if k in fields})
    except ValidationError as exc:
        raise ConfigError(f"Invalid environment file {env_file.path}: {exc}") from exc


def save_environment(env_file: EnvironmentFile, environment: Environment) -> None:
    env_file.write(environment.exports())


@dataclass(frozen=True)
class Workspace:
    """Directory layout shared by the setup, mesh and Bookinfo steps."""

    root: Path

    @property
    def config_dir(self) -> Path:
        return self.root / "configs"

    @property
    def env_file(self) -> EnvironmentFile:
        return EnvironmentFile(self.config_dir / "environment-vars.sh")

    @property
    def asmcli(self) -> Path:
        return self.root / "asmcli"

    @property
    def asm_output(self) -> Path:
        return self.root / "asm_output"

    @property
    def cluster_info(self) -> Path:
        return self.root / "cluster-info.txt"

    @property
    def asm_info(self) -> Path:
        return self.root / "asm-installation-info.txt"

    @property
    def bookinfo_info(self) -> Path:
        return self.root / "bookinfo-access-info.txt"


# ── TTL cache ────────────────────────────────────────────────────────────────

_CACHE_TTL = 5  # seconds
_cache: dict[str, str] = {}
_cache_time: float = 0.0
_env_file: EnvironmentFile | None = None


def use_environment_file(env_file: EnvironmentFile | None) -> None:
    """Select the environment file consulted before env vars."""
    global _env_file
    _env_file = env_file
    invalidate_cache()


def _refresh_cache() -> None:
    global _cache, _cache_time
    if _env_file is None:
        _cache = {}
    else:
        try:
            _cache = _env_file.read()
        except (OSError, ConfigError) as exc:
            logger.warning(f"Could not read {_env_file.path}: {exc}")
            _cache = {}
    _cache_time = time.monotonic()


def invalidate_cache() -> None:
    """Force next get_setting() to re-read the environment file."""
    global _cache_time
    _cache_time = 0.0


def _ensure_cache() -> None:
    if _cache_time == 0.0 or time.monotonic() - _cache_time > _CACHE_TTL:
        _refresh_cache()


# ── Accessors ────────────────────────────────────────────────────────────────


def _lookup(key: str, include_file: bool = True) -> tuple[str, str]:
    defn = SETTING_DEFS.get(key)
    if defn is None:
        raise KeyError(f"Unknown setting: {key}")

    if include_file:
        _ensure_cache()
        file_val = _cache.get(defn.env_var)
        if file_val:
            return file_val, "file"

    env_val = os.environ.get(defn.env_var, "")
    if env_val:
        return env_val, "env"

    return defn.default, "default"


def get_setting(key: str, include_file: bool = True) -> str:
    """Return the effective value for *key*.

    Resolution: environment file (non-empty) > env var (non-empty) > default.
    The setup step passes include_file=False because it is the one that
    (re)writes the file. Raises KeyError for unknown keys.
    """
    return _lookup(key, include_file)[0]


def get_setting_int(key: str, fallback: int | None = None, minimum: int | None = None) -> int:
    """get_setting() coerced to int, raised to ``minimum`` when below it."""
    raw = get_setting(key)
    try:
        value = int(raw)
    except (ValueError, TypeError):
        if fallback is not None:
            return fallback
        raise
    if minimum is not None and value < minimum:
        logger.warning(f"Setting {key}={value} is below {minimum}; using {minimum}")
        return minimum
    return value


def get_setting_float(key: str, fallback: float | None = None) -> float:
    raw = get_setting(key)
    try:
        return float(raw)
    except (ValueError, TypeError):
        if fallback is not None:
            return fallback
        raise


def get_setting_source(key: str) -> str:
    """Return where the effective value comes from: 'file', 'env', or 'default'."""
    return _lookup(key)[1]


def clear_settings() -> None:
    """Detach the environment file and drop cached values (for tests)."""
    global _cache
    _cache = {}
    use_environment_file(None)


def log_settings_sources() -> None:
    """Log the source of each setting at debug level."""
    for defn in SETTING_DEFS.values():
        value, source = _lookup(defn.key)
        logger.debug(f"Setting {defn.key}: source={source}, value={value or '(empty)'}")
