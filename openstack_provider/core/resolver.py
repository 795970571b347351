"""Resolve names and IDs to remote resources, scoped by ownership tags."""

from __future__ import annotations

import logging
import uuid

from openstack_provider.core.errors import AmbiguousMatchError, NotFoundError
from openstack_provider.core.interfaces import ComputeBackend
from openstack_provider.core.models import ManagedServer, OwnershipScope

logger = logging.getLogger(__name__)


def is_uuid(value: str) -> bool:
    try:
        uuid.UUID(value)
    except (ValueError, TypeError, AttributeError):
        return False
    return True


# --- Servers ---


def lookup_server_by_id(
    backend: ComputeBackend, server_id: str, scope: OwnershipScope
) -> ManagedServer:
    """Point lookup. Servers owned by another controller are reported missing."""
    server = ManagedServer.from_payload(backend.get_server(server_id))
    if server.controller_id != scope.controller_id:
        logger.debug(
            "Server %s is tagged for controller %r, not %r",
            server_id,
            server.controller_id,
            scope.controller_id,
        )
        raise NotFoundError(f"server with name or ID {server_id} not found")
    return server


def list_servers(backend: ComputeBackend, scope: OwnershipScope) -> list[ManagedServer]:
    """List every server carrying the scope's tags."""
    return [ManagedServer.from_payload(item) for item in backend.list_servers(scope.tags())]


def resolve_servers(
    backend: ComputeBackend, name_or_id: str, scope: OwnershipScope
) -> list[ManagedServer]:
    """Return every server in scope matching ``name_or_id``.

    An ID yields at most one server; a name may match several, since names
    are not unique.
    """
    if is_uuid(name_or_id):
        return [lookup_server_by_id(backend, name_or_id, scope)]

    return [server for server in list_servers(backend, scope) if server.name == name_or_id]


def get_server(backend: ComputeBackend, name_or_id: str, scope: OwnershipScope) -> ManagedServer:
    """Resolve ``name_or_id`` to exactly one server."""
    results = resolve_servers(backend, name_or_id, scope)
    if not results:
        raise NotFoundError(f"failed to find server with name or id {name_or_id}")
    if len(results) > 1:
        raise AmbiguousMatchError(
            f"multiple servers with name or id {name_or_id}; manual intervention required"
        )
    return results[0]


# --- Flavors, images, networks ---
# On duplicate names the first match wins.


def _first_match(items: list[dict], name_or_id: str) -> dict | None:
    for item in items:
        if item.get("id") == name_or_id or item.get("name") == name_or_id:
            return item
    return None


def find_flavor(backend: ComputeBackend, name_or_id: str) -> dict:
    try:
        return backend.get_flavor(name_or_id)
    except NotFoundError:
        pass

    flavor = _first_match(backend.list_flavors(), name_or_id)
    if flavor is None:
        raise NotFoundError(f"failed to find flavor with name or id {name_or_id}")
    return flavor


def find_image(backend: ComputeBackend, name_or_id: str, visibility: str = "") -> dict:
    if is_uuid(name_or_id):
        return backend.get_image(name_or_id)

    image = _first_match(backend.list_images(name=name_or_id, visibility=visibility or None), name_or_id)
    if image is None:
        raise NotFoundError(f"failed to find image with name or id {name_or_id}")
    return image


def find_network(backend: ComputeBackend, name_or_id: str) -> dict:
    if is_uuid(name_or_id):
        return backend.get_network(name_or_id)

    network = _first_match(backend.list_networks(), name_or_id)
    if network is None:
        raise NotFoundError(f"failed to find network with name or id {name_or_id}")
    return network
