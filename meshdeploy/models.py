"""Data models for meshdeploy."""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

PENDING_ADDRESS = "<PENDING>"

WORKLOAD_POOL_SUFFIX = ".svc.id.goog"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Environment(BaseModel):
    """Project/cluster identity persisted between steps.

    Field names match the exported shell variables so the environment file
    stays interchangeable with ``source configs/environment-vars.sh``.
    """

    model_config = ConfigDict(frozen=True)

    PROJECT_ID: str = Field(..., description="GCP project ID")
    PROJECT_NUMBER: str = Field(..., description="Numeric GCP project number")
    CLUSTER_NAME: str = Field(..., description="GKE cluster name")
    CLUSTER_ZONE: str = Field(..., description="GKE cluster zone")
    WORKLOAD_POOL: str = Field(..., description="Workload identity pool")
    MESH_ID: str = Field(..., description="Mesh ID label value")
    GATEWAY_URL: str | None = Field(default=None, description="Ingress gateway address")

    @field_validator("PROJECT_ID", "CLUSTER_NAME", "CLUSTER_ZONE")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be empty")
        return value

    @field_validator("PROJECT_NUMBER")
    @classmethod
    def _numeric(cls, value: str) -> str:
        value = value.strip()
        if not value.isdigit():
            raise ValueError(f"project number must be numeric, got {value!r}")
        return value

    @model_validator(mode="after")
    def _derived_values_consistent(self) -> Environment:
        expected_pool = f"{self.PROJECT_ID}{WORKLOAD_POOL_SUFFIX}"
        if self.WORKLOAD_POOL != expected_pool:
            raise ValueError(f"WORKLOAD_POOL must be {expected_pool}, got {self.WORKLOAD_POOL}")
        expected_mesh = f"proj-{self.PROJECT_NUMBER}"
        if self.MESH_ID != expected_mesh:
            raise ValueError(f"MESH_ID must be {expected_mesh}, got {self.MESH_ID}")
        return self

    @classmethod
    def derive(
        cls, *, project_id: str, project_number: str, cluster_name: str, cluster_zone: str
    ) -> Environment:
        """Build an environment, filling in the workload pool and mesh ID."""
        return cls(
            PROJECT_ID=project_id,
            PROJECT_NUMBER=project_number,
            CLUSTER_NAME=cluster_name,
            CLUSTER_ZONE=cluster_zone,
            WORKLOAD_POOL=f"{project_id.strip()}{WORKLOAD_POOL_SUFFIX}",
            MESH_ID=f"proj-{project_number.strip()}",
        )

    def exports(self) -> dict[str, str]:
        return {k: v for k, v in self.model_dump().items() if v is not None}


class ClusterSpec(BaseModel):
    """Shape of the GKE cluster created by the setup step."""

    machine_type: str = "e2-standard-4"
    num_nodes: int = Field(default=4, ge=1)
    min_nodes: int = Field(default=2, ge=0)
    max_nodes: int = Field(default=6, ge=1)
    subnetwork: str = "default"
    release_channel: str = "regular"
    logging: str = "SYSTEM,WORKLOAD"
    monitoring: str = "SYSTEM"

    @model_validator(mode="after")
    def _autoscaling_bounds(self) -> ClusterSpec:
        if self.min_nodes > self.max_nodes:
            raise ValueError(
                f"min_nodes ({self.min_nodes}) must not exceed max_nodes ({self.max_nodes})"
            )
        return self

    def gcloud_flags(self, env: Environment) -> list[str]:
        return [
            f"--machine-type={self.machine_type}",
            f"--num-nodes={self.num_nodes}",
            f"--subnetwork={self.subnetwork}",
            f"--release-channel={self.release_channel}",
            "--labels",
            f"mesh_id={env.MESH_ID}",
            f"--workload-pool={env.WORKLOAD_POOL}",
            f"--logging={self.logging}",
            f"--monitoring={self.monitoring}",
            "--enable-ip-alias",
            "--enable-autoscaling",
            f"--min-nodes={self.min_nodes}",
            f"--max-nodes={self.max_nodes}",
            "--enable-autorepair",
            "--enable-autoupgrade",
        ]


class SetupResult(BaseModel):
    status: str = "ready"
    environment: Environment
    context: str = ""
    iam_role: str | None = Field(default=None, description="Owner/editor role found, if any")
    enabled_apis: list[str] = Field(default_factory=list)
    completed_at: datetime = Field(default_factory=_utc_now)


class MeshInstallResult(BaseModel):
    status: str = "installed"
    revision: str
    gateway_namespace: str
    external_ip: str | None = None
    ip_attempts: int = 0
    completed_at: datetime = Field(default_factory=_utc_now)


class BookinfoResult(BaseModel):
    status: str = "deployed"
    istio_dir: str
    gateway_url: str = PENDING_ADDRESS
    internal_check_passed: bool = False
    external_check_passed: bool = False
    external_http_status: str | None = None
    completed_at: datetime = Field(default_factory=_utc_now)

    @property
    def address_pending(self) -> bool:
        return self.gateway_url == PENDING_ADDRESS

    @property
    def app_url(self) -> str:
        return f"http://{self.gateway_url}/productpage"


class TeardownResult(BaseModel):
    dry_run: bool = False
    actions: list[str] = Field(default_factory=list)
    completed: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)


class StatusReport(BaseModel):
    cluster_status: str | None = None
    context: str | None = None
    mesh_revision: str | None = None
    gateway_address: str | None = None
    bookinfo_pods: dict[str, str] = Field(default_factory=dict)
    errors: list[str] = Field(default_factory=list)
