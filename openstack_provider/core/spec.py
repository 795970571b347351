"""Machine spec — merges provider config with per-request extra specs.

Nothing here talks to the cloud. The result of ``new_machine_spec`` is the
complete set of parameters used to build a server creation request.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
from dataclasses import dataclass, field, replace

from jsonschema import Draft7Validator

from openstack_provider.core.errors import ValidationError
from openstack_provider.core.interfaces import ToolFetcher
from openstack_provider.core.models import (
    CONTROLLER_ID_TAG,
    POOL_ID_TAG,
    BootstrapInstance,
)
from openstack_provider.shared.config import IMAGE_VISIBILITIES, Config, is_valid_visibility

logger = logging.getLogger(__name__)

DEFAULT_BOOT_DISK_SIZE = 50

_STRING_LIST = {"type": "array", "items": {"type": "string"}}

EXTRA_SPECS_SCHEMA = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "additionalProperties": False,
    "properties": {
        "security_groups": _STRING_LIST,
        "allowed_image_owners": {
            **_STRING_LIST,
            "description": "Image owners allowed when creating the instance. Empty allows all.",
        },
        "image_visibility": {
            "type": "string",
            "description": f"Visibility of the image to use ({', '.join(IMAGE_VISIBILITIES)}).",
        },
        "network_id": {
            "type": "string",
            "description": "The tenant network runners are connected to.",
        },
        "storage_backend": {
            "type": "string",
            "description": "The volume type used when booting from volume.",
        },
        "boot_from_volume": {"type": "boolean"},
        "boot_disk_size": {
            "type": "integer",
            "minimum": 0,
            "description": "Root disk size in GB when booting from volume.",
        },
        "use_config_drive": {"type": "boolean"},
        "enable_boot_debug": {
            "type": "boolean",
            "description": "Adds 'set -x' to the boot script.",
        },
        "disable_updates": {"type": "boolean"},
        "extra_packages": _STRING_LIST,
        "runner_install_template": {
            "type": "string",
            "description": "Base64 encoded runner install script.",
        },
        "pre_install_scripts": {
            "type": "object",
            "additionalProperties": {"type": "string"},
            "description": "Script name to base64 encoded script, run before the install.",
        },
        "extra_context": {
            "type": "object",
            "additionalProperties": {"type": "string"},
        },
    },
}

_VALIDATOR = Draft7Validator(EXTRA_SPECS_SCHEMA)


@dataclass(frozen=True)
class ExtraSpecs:
    """Per-request overrides. ``None`` means the key was absent."""

    security_groups: list[str] | None = None
    allowed_image_owners: list[str] | None = None
    image_visibility: str | None = None
    network_id: str | None = None
    storage_backend: str | None = None
    boot_from_volume: bool | None = None
    boot_disk_size: int | None = None
    use_config_drive: bool | None = None
    enable_boot_debug: bool | None = None
    disable_updates: bool | None = None
    extra_packages: list[str] | None = None
    runner_install_template: bytes | None = None
    pre_install_scripts: dict[str, bytes] | None = None
    extra_context: dict[str, str] | None = None


def _decode_b64(value: str, field_name: str) -> bytes:
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValidationError(f"{field_name}: invalid base64 content") from exc


def validate_extra_specs(document) -> None:
    """Validate a decoded extra specs document against the schema."""
    errors = sorted(_VALIDATOR.iter_errors(document), key=lambda e: [str(p) for p in e.path])
    if errors:
        details = "; ".join(
            f"{'.'.join(str(p) for p in err.path) or '(root)'}: {err.message}" for err in errors
        )
        raise ValidationError(f"failed to validate extra specs: {details}")


def parse_extra_specs(raw) -> ExtraSpecs:
    """Parse and schema-check the raw extra specs of a bootstrap request.

    Accepts an already decoded mapping, a JSON string / bytes, or nothing.
    """
    if raw is None or raw == "" or raw == b"":
        return ExtraSpecs()

    if isinstance(raw, (str, bytes)):
        try:
            document = json.loads(raw)
        except ValueError as exc:
            raise ValidationError(f"failed to validate extra specs: invalid JSON: {exc}") from exc
    else:
        document = raw

    validate_extra_specs(document)

    template = document.get("runner_install_template")
    scripts = document.get("pre_install_scripts")
    return ExtraSpecs(
        security_groups=document.get("security_groups"),
        allowed_image_owners=document.get("allowed_image_owners"),
        image_visibility=document.get("image_visibility"),
        network_id=document.get("network_id"),
        storage_backend=document.get("storage_backend"),
        boot_from_volume=document.get("boot_from_volume"),
        boot_disk_size=document.get("boot_disk_size"),
        use_config_drive=document.get("use_config_drive"),
        enable_boot_debug=document.get("enable_boot_debug"),
        disable_updates=document.get("disable_updates"),
        extra_packages=document.get("extra_packages"),
        runner_install_template=(
            _decode_b64(template, "runner_install_template") if template is not None else None
        ),
        pre_install_scripts=(
            {
                name: _decode_b64(body, f"pre_install_scripts.{name}")
                for name, body in scripts.items()
            }
            if scripts is not None
            else None
        ),
        extra_context=document.get("extra_context"),
    )


@dataclass(frozen=True)
class MachineSpec:
    """Everything needed to request a new server."""

    network_id: str = ""
    flavor: str = ""
    image: str = ""
    storage_backend: str = ""
    security_groups: list[str] = field(default_factory=list)
    allowed_image_owners: list[str] = field(default_factory=list)
    image_visibility: str = ""
    boot_from_volume: bool = False
    boot_disk_size: int = 0
    use_config_drive: bool = False
    disable_updates: bool = False
    enable_boot_debug: bool = False
    extra_packages: list[str] = field(default_factory=list)
    runner_install_template: bytes | None = None
    pre_install_scripts: dict[str, bytes] = field(default_factory=dict)
    extra_context: dict[str, str] = field(default_factory=dict)
    tools: dict = field(default_factory=dict)
    tags: list[str] = field(default_factory=list)
    properties: dict[str, str] = field(default_factory=dict)
    user_data: str = ""
    bootstrap: BootstrapInstance = field(default_factory=BootstrapInstance)

    def validate(self) -> None:
        if not self.network_id:
            raise ValidationError("missing network ID")
        if self.boot_from_volume and self.boot_disk_size == 0:
            raise ValidationError("boot from volume is enabled, and boot disk size is 0")
        if not self.flavor:
            raise ValidationError("missing flavor")
        if not self.image:
            raise ValidationError("missing image")
        if not self.tags:
            raise ValidationError("missing tags; at least the controller ID and pool ID must be set")
        if not self.tools.get("download_url"):
            raise ValidationError("missing tools")
        if not self.bootstrap.name:
            raise ValidationError("missing bootstrap params")


def ownership_tags(controller_id: str, pool_id: str) -> list[str]:
    return [f"{POOL_ID_TAG}={pool_id}", f"{CONTROLLER_ID_TAG}={controller_id}"]


def _properties(bootstrap: BootstrapInstance, controller_id: str) -> dict[str, str]:
    return {
        "os_arch": bootstrap.os_arch,
        "os_type": bootstrap.os_type,
        POOL_ID_TAG: bootstrap.pool_id,
        CONTROLLER_ID_TAG: controller_id,
    }


def merge_extra_specs(spec: MachineSpec, extra: ExtraSpecs) -> MachineSpec:
    """Overlay ``extra`` on ``spec``; only present (non-empty) fields win."""
    changes = {}

    if extra.storage_backend:
        changes["storage_backend"] = extra.storage_backend
    if extra.boot_disk_size is not None:
        changes["boot_disk_size"] = extra.boot_disk_size
    if extra.boot_from_volume is not None:
        changes["boot_from_volume"] = extra.boot_from_volume
    if extra.network_id:
        changes["network_id"] = extra.network_id
    if extra.security_groups:
        changes["security_groups"] = list(extra.security_groups)
    if extra.use_config_drive is not None:
        changes["use_config_drive"] = extra.use_config_drive
    if extra.allowed_image_owners is not None:
        changes["allowed_image_owners"] = list(extra.allowed_image_owners)
    if extra.enable_boot_debug is not None:
        changes["enable_boot_debug"] = extra.enable_boot_debug
    if extra.disable_updates is not None:
        changes["disable_updates"] = extra.disable_updates
    if extra.extra_packages is not None:
        changes["extra_packages"] = list(extra.extra_packages)
    if extra.runner_install_template is not None:
        changes["runner_install_template"] = extra.runner_install_template
    if extra.pre_install_scripts is not None:
        changes["pre_install_scripts"] = dict(extra.pre_install_scripts)
    if extra.extra_context is not None:
        changes["extra_context"] = dict(extra.extra_context)

    # An empty or unknown visibility never overrides the configured one.
    if is_valid_visibility(extra.image_visibility):
        changes["image_visibility"] = extra.image_visibility
    elif extra.image_visibility:
        logger.warning("Ignoring invalid image_visibility %r in extra specs", extra.image_visibility)

    return replace(spec, **changes)


def new_machine_spec(
    bootstrap: BootstrapInstance,
    config: Config,
    controller_id: str,
    tool_fetcher: ToolFetcher,
) -> MachineSpec:
    """Build and validate the machine spec for a create request."""
    if config is None:
        raise ValidationError("invalid config")

    tools = tool_fetcher(bootstrap.os_type, bootstrap.os_arch, bootstrap.tools)

    try:
        extra = parse_extra_specs(bootstrap.extra_specs)
    except ValidationError as exc:
        raise ValidationError(f"failed to get extra specs for {bootstrap.name}: {exc}") from exc

    boot_disk_size = DEFAULT_BOOT_DISK_SIZE
    if config.root_disk_size is not None:
        boot_disk_size = config.root_disk_size

    spec = MachineSpec(
        network_id=config.network_id,
        flavor=bootstrap.flavor,
        image=bootstrap.image,
        storage_backend=config.default_storage_backend,
        security_groups=list(config.default_security_groups),
        allowed_image_owners=list(config.allowed_image_owners),
        image_visibility=config.image_visibility,
        boot_from_volume=config.boot_from_volume,
        boot_disk_size=boot_disk_size,
        use_config_drive=config.use_config_drive,
        disable_updates=config.disable_updates_on_boot,
        enable_boot_debug=config.enable_boot_debug,
        tools=tools,
        tags=ownership_tags(controller_id, bootstrap.pool_id),
        properties=_properties(bootstrap, controller_id),
        bootstrap=bootstrap,
    )
    spec = merge_extra_specs(spec, extra)

    try:
        spec.validate()
    except ValidationError as exc:
        raise ValidationError(f"failed to validate spec for {bootstrap.name}: {exc}") from exc
    return spec


def with_image_properties(spec: MachineSpec, image: dict) -> MachineSpec:
    """Copy OS name / version from image metadata into the server properties."""
    image_props = dict(image.get("properties") or {})
    properties = dict(spec.properties)
    for source, target in (("os_distro", "os_name"), ("os_version", "os_version")):
        value = image.get(source, image_props.get(source))
        if isinstance(value, str):
            properties[target] = value
    return replace(spec, properties=properties)


def server_create_attrs(spec: MachineSpec, flavor: dict, network: dict, image: dict) -> dict:
    """Build the server creation body for booting from an image."""
    return {
        "name": spec.bootstrap.name,
        "image_id": image["id"],
        "flavor_id": flavor["id"],
        "security_groups": [{"name": group} for group in spec.security_groups],
        "networks": [{"uuid": network["id"]}],
        "metadata": dict(spec.properties),
        "config_drive": spec.use_config_drive,
        "tags": list(spec.tags),
        "user_data": base64.b64encode(spec.user_data.encode("utf-8")).decode("ascii"),
    }


def boot_from_volume_attrs(spec: MachineSpec, attrs: dict) -> dict:
    """Extend image-boot attrs with a root volume created from the image."""
    root_disk = {
        "boot_index": 0,
        "delete_on_termination": True,
        "destination_type": "volume",
        "source_type": "image",
        "uuid": attrs["image_id"],
        "volume_size": spec.boot_disk_size,
    }
    if spec.storage_backend:
        root_disk["volume_type"] = spec.storage_backend

    volume_attrs = {key: value for key, value in attrs.items() if key != "image_id"}
    volume_attrs["block_device_mapping"] = [root_disk]
    return volume_attrs
