"""Records passed between the provider core, its backends and its callers."""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field

from openstack_provider.core.errors import ValidationError

CONTROLLER_ID_TAG = "garm-controller-id"
POOL_ID_TAG = "garm-pool-id"


@dataclass(frozen=True)
class OwnershipScope:
    """Controller (and optionally pool) identity encoded as server tags."""

    controller_id: str
    pool_id: str | None = None

    def tags(self) -> list[str]:
        tags = [f"{CONTROLLER_ID_TAG}={self.controller_id}"]
        if self.pool_id:
            tags.append(f"{POOL_ID_TAG}={self.pool_id}")
        return tags


def tag_value(tags: list[str] | None, name: str) -> str | None:
    """Return the value of the first ``name=value`` tag, or None."""
    prefix = f"{name}="
    for tag in tags or []:
        if tag.startswith(prefix):
            return tag.split("=", 1)[1]
    return None


@dataclass
class ManagedServer:
    """A compute server as reported by the remote API."""

    id: str
    name: str = ""
    status: str = ""
    tags: list[str] = field(default_factory=list)
    addresses: dict = field(default_factory=dict)
    metadata: dict = field(default_factory=dict)
    availability_zone: str | None = None
    task_state: str | None = None
    vm_state: str | None = None
    power_state: int | None = None
    disk_config: str | None = None

    @classmethod
    def from_payload(cls, payload: dict) -> "ManagedServer":
        """Build from either a raw compute API body or an SDK ``to_dict()``."""

        def pick(*keys):
            for key in keys:
                if payload.get(key) is not None:
                    return payload[key]
            return None

        return cls(
            id=payload.get("id") or "",
            name=payload.get("name") or "",
            status=payload.get("status") or "",
            tags=list(payload.get("tags") or []),
            addresses=dict(payload.get("addresses") or {}),
            metadata=dict(payload.get("metadata") or {}),
            availability_zone=pick("availability_zone", "OS-EXT-AZ:availability_zone"),
            task_state=pick("task_state", "OS-EXT-STS:task_state"),
            vm_state=pick("vm_state", "OS-EXT-STS:vm_state"),
            power_state=pick("power_state", "OS-EXT-STS:power_state"),
            disk_config=pick("disk_config", "OS-DCF:diskConfig"),
        )

    @property
    def controller_id(self) -> str | None:
        return tag_value(self.tags, CONTROLLER_ID_TAG)

    @property
    def pool_id(self) -> str | None:
        return tag_value(self.tags, POOL_ID_TAG)


@dataclass
class BootstrapInstance:
    """Create request handed over by the pool manager."""

    name: str = ""
    pool_id: str = ""
    flavor: str = ""
    image: str = ""
    os_type: str = ""
    os_arch: str = ""
    tools: list[dict] = field(default_factory=list)
    instance_token: str = ""
    callback_url: str = ""
    metadata_url: str = ""
    repo_url: str = ""
    labels: list[str] = field(default_factory=list)
    ssh_keys: list[str] = field(default_factory=list)
    ca_cert_bundle: str = ""
    github_runner_group: str = ""
    jit_config_enabled: bool = False
    extra_specs: dict | str | None = None

    @classmethod
    def from_dict(cls, data: dict) -> "BootstrapInstance":
        if not isinstance(data, dict):
            raise ValidationError(
                f"bootstrap parameters must be a JSON object, got {type(data).__name__}"
            )
        return cls(
            name=data.get("name", ""),
            pool_id=data.get("pool_id", ""),
            flavor=data.get("flavor", ""),
            image=data.get("image", ""),
            os_type=data.get("os_type", ""),
            os_arch=data.get("arch", ""),
            tools=list(data.get("tools") or []),
            instance_token=data.get("instance-token", ""),
            callback_url=data.get("callback-url", ""),
            metadata_url=data.get("metadata-url", ""),
            repo_url=data.get("repo_url", ""),
            labels=list(data.get("labels") or []),
            ssh_keys=list(data.get("ssh-keys") or []),
            ca_cert_bundle=data.get("ca-cert-bundle") or "",
            github_runner_group=data.get("github-runner-group", ""),
            jit_config_enabled=bool(data.get("jit_config_enabled", False)),
            extra_specs=data.get("extra_specs"),
        )

    @classmethod
    def from_json(cls, raw: str | bytes) -> "BootstrapInstance":
        return cls.from_dict(json.loads(raw))


@dataclass
class ProviderInstance:
    """Abstract instance record returned to the pool manager."""

    provider_id: str
    name: str
    status: str = ""
    os_type: str = ""
    os_arch: str = ""
    os_name: str = ""
    os_version: str = ""
    addresses: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)
