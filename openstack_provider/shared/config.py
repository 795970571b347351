"""Configuration helpers — provider TOML file and execution environment."""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field

import yaml

from openstack_provider.core.errors import ConfigError

IMAGE_VISIBILITIES = ("public", "private", "shared", "community", "all")
DEFAULT_BOOT_TIMEOUT = 120
DEFAULT_POLL_INTERVAL = 1.0


def get_env(name: str, default: str | None = None) -> str:
    """Get an environment variable, raising if missing and no default."""
    value = os.environ.get(name, default)
    if value is None:
        raise ConfigError(f"Missing required environment variable: {name}")
    return value


# Execution environment (set by the pool manager for every invocation)
COMMAND = lambda: get_env("GARM_COMMAND")
CONTROLLER_ID = lambda: get_env("GARM_CONTROLLER_ID")
POOL_ID = lambda: get_env("GARM_POOL_ID", "")
INSTANCE_ID = lambda: get_env("GARM_INSTANCE_ID", "")
PROVIDER_CONFIG_FILE = lambda: get_env("GARM_PROVIDER_CONFIG_FILE")


def is_valid_visibility(visibility: str | None) -> bool:
    return visibility in IMAGE_VISIBILITIES


def _read_clouds_file(path: str) -> dict:
    if not path:
        raise ConfigError("missing clouds config")
    if not os.path.exists(path):
        raise ConfigError(f"failed to access clouds config: {path}")
    try:
        with open(path) as fh:
            content = yaml.safe_load(fh) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"failed to read clouds config {path}: {exc}") from exc
    if not isinstance(content, dict):
        raise ConfigError(f"invalid clouds config {path}: expected a mapping")
    return content.get("clouds") or {}


def _field(data: dict, key: str, types, default, prefix: str = ""):
    """Return ``data[key]`` if it has one of ``types``, ``default`` if absent."""
    value = data.get(key)
    if value is None:
        return default
    # bool is an int subclass but never a valid number.
    if not isinstance(value, types) or (isinstance(value, bool) and types is not bool):
        expected = " or ".join(t.__name__ for t in types) if isinstance(types, tuple) else types.__name__
        raise ConfigError(f"invalid {prefix}{key}: expected {expected}, got {type(value).__name__}")
    return value


def _string_list(data: dict, key: str) -> list[str]:
    value = _field(data, key, list, [])
    if not all(isinstance(item, str) for item in value):
        raise ConfigError(f"invalid {key}: expected a list of strings")
    return list(value)


@dataclass(frozen=True)
class Credentials:
    """Paths to clouds.yaml (mandatory), clouds-public.yaml and secure.yaml."""

    clouds: str = ""
    public_clouds: str = ""
    secure_clouds: str = ""

    def load_clouds(self) -> dict:
        return _read_clouds_file(self.clouds)

    def load_public_clouds(self) -> dict:
        if not self.public_clouds or not os.path.exists(self.public_clouds):
            return {}
        return _read_clouds_file(self.public_clouds)

    def load_secure_clouds(self) -> dict:
        if not self.secure_clouds or not os.path.exists(self.secure_clouds):
            return {}
        return _read_clouds_file(self.secure_clouds)

    def validate(self) -> None:
        self.load_clouds()
        self.load_public_clouds()
        self.load_secure_clouds()

    def has_cloud(self, name: str) -> bool:
        try:
            return name in self.load_clouds()
        except ConfigError:
            return False


@dataclass(frozen=True)
class Config:
    """Provider-wide defaults.

    ``cloud``, ``credentials`` and the timing knobs can not be changed per
    request; everything else can be overridden through extra specs.
    """

    cloud: str = ""
    credentials: Credentials = field(default_factory=Credentials)
    network_id: str = ""
    default_storage_backend: str = ""
    default_security_groups: list[str] = field(default_factory=list)
    boot_from_volume: bool = False
    root_disk_size: int | None = None
    use_config_drive: bool = False
    allowed_image_owners: list[str] = field(default_factory=list)
    image_visibility: str = ""
    disable_updates_on_boot: bool = False
    enable_boot_debug: bool = False
    boot_timeout: int = DEFAULT_BOOT_TIMEOUT
    poll_interval: float = DEFAULT_POLL_INTERVAL

    @classmethod
    def from_dict(cls, data: dict) -> "Config":
        """Build from a decoded TOML document, rejecting mistyped fields."""
        creds = _field(data, "credentials", dict, {})
        return cls(
            cloud=_field(data, "cloud", str, ""),
            credentials=Credentials(
                clouds=_field(creds, "clouds", str, "", prefix="credentials."),
                public_clouds=_field(creds, "public_clouds", str, "", prefix="credentials."),
                secure_clouds=_field(creds, "secure_clouds", str, "", prefix="credentials."),
            ),
            network_id=_field(data, "network_id", str, ""),
            default_storage_backend=_field(data, "default_storage_backend", str, ""),
            default_security_groups=_string_list(data, "default_security_groups"),
            boot_from_volume=_field(data, "boot_from_volume", bool, False),
            root_disk_size=_field(data, "root_disk_size", int, None),
            use_config_drive=_field(data, "use_config_drive", bool, False),
            allowed_image_owners=_string_list(data, "allowed_image_owners"),
            image_visibility=_field(data, "image_visibility", str, ""),
            disable_updates_on_boot=_field(data, "disable_updates_on_boot", bool, False),
            enable_boot_debug=_field(data, "enable_boot_debug", bool, False),
            boot_timeout=_field(data, "boot_timeout", int, DEFAULT_BOOT_TIMEOUT),
            poll_interval=float(_field(data, "poll_interval", (int, float), DEFAULT_POLL_INTERVAL)),
        )

    def validate(self) -> None:
        try:
            self.credentials.validate()
        except ConfigError as exc:
            raise ConfigError(f"failed to validate credentials: {exc}") from exc
        if not self.credentials.has_cloud(self.cloud):
            raise ConfigError(f"cloud {self.cloud} is not defined in clouds.yaml")
        if not self.network_id:
            raise ConfigError("missing network_id")
        if self.image_visibility and not is_valid_visibility(self.image_visibility):
            raise ConfigError(
                f"invalid image_visibility {self.image_visibility!r}, "
                f"expected one of {', '.join(IMAGE_VISIBILITIES)}"
            )
        if self.root_disk_size is not None and self.root_disk_size < 0:
            raise ConfigError("root_disk_size must not be negative")
        if self.boot_timeout <= 0:
            raise ConfigError("boot_timeout must be positive")
        if self.poll_interval < 0:
            raise ConfigError("poll_interval must not be negative")


def load_config(path: str) -> Config:
    """Read and validate the provider TOML config file."""
    try:
        with open(path, "rb") as fh:
            data = tomllib.load(fh)
    except (OSError, tomllib.TOMLDecodeError) as exc:
        raise ConfigError(f"error decoding config {path}: {exc}") from exc

    # Relative credential paths are relative to the config file.
    base_dir = os.path.dirname(os.path.abspath(path))
    creds = data.get("credentials")
    if isinstance(creds, dict):
        for key in ("clouds", "public_clouds", "secure_clouds"):
            value = creds.get(key)
            if isinstance(value, str) and value and not os.path.isabs(value):
                creds[key] = os.path.join(base_dir, value)

    try:
        config = Config.from_dict(data)
        config.validate()
    except ConfigError as exc:
        raise ConfigError(f"error validating config: {exc}") from exc
    return config
