"""Translate remote servers into the abstract instance record."""

from __future__ import annotations

from openstack_provider.core.models import ManagedServer, ProviderInstance

STATUS_MAP = {
    "ACTIVE": "running",
    "SHUTOFF": "stopped",
    "BUILD": "pending_create",
    "ERROR": "error",
    "DELETING": "pending_delete",
}

ADDRESS_TYPE_MAP = {
    "fixed": "private",
    "floating": "public",
}


def _addresses(server: ManagedServer) -> list[dict]:
    addresses = []
    for entries in server.addresses.values():
        if not isinstance(entries, list):
            continue
        for entry in entries:
            if not isinstance(entry, dict):
                continue
            address = entry.get("addr")
            addr_type = entry.get("OS-EXT-IPS:type")
            if not isinstance(address, str) or not isinstance(addr_type, str):
                continue
            if addr_type not in ADDRESS_TYPE_MAP:
                continue
            addresses.append({"address": address, "type": ADDRESS_TYPE_MAP[addr_type]})
    return addresses


def server_to_instance(server: ManagedServer) -> ProviderInstance:
    """Map a server to a ProviderInstance. Unknown statuses map to ""."""
    metadata = server.metadata
    return ProviderInstance(
        provider_id=server.id,
        name=server.name,
        status=STATUS_MAP.get(server.status, ""),
        os_type=metadata.get("os_type", ""),
        os_arch=metadata.get("os_arch", ""),
        os_name=metadata.get("os_name", ""),
        os_version=metadata.get("os_version", ""),
        addresses=_addresses(server),
    )
