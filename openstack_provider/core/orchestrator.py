"""Orchestrator — drives server create, delete, start and stop.

Cloud-agnostic: depends on the ComputeBackend protocol and the resolver.
"""

from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, replace

from openstack_provider.core import resolver
from openstack_provider.core.errors import (
    InstanceErrorState,
    NotFoundError,
    OperationCancelled,
    ProviderError,
    ValidationError,
    WaitTimeoutError,
    with_context,
)
from openstack_provider.core.interfaces import ComputeBackend
from openstack_provider.core.models import ManagedServer, OwnershipScope

logger = logging.getLogger(__name__)

ACTIVE = "ACTIVE"
SHUTOFF = "SHUTOFF"
ERROR = "ERROR"
DELETED = "DELETED"


@dataclass(frozen=True)
class PollSettings:
    """Bounds for a status poll. ``cancel`` aborts the wait when set."""

    timeout: float = 120
    interval: float = 1.0
    cancel: threading.Event | None = None


def wait_for_status(
    backend: ComputeBackend,
    server_id: str,
    status: str,
    scope: OwnershipScope,
    poll: PollSettings,
) -> None:
    """Poll a server until it reports ``status``.

    Waiting for DELETED treats a missing server as success.
    """
    deadline = time.monotonic() + poll.timeout

    while True:
        try:
            current = resolver.lookup_server_by_id(backend, server_id, scope)
        except NotFoundError:
            if status == DELETED:
                return
            raise

        if current.status == status:
            return
        if current.status == ERROR:
            raise InstanceErrorState(f"server {server_id} is in ERROR state")

        if time.monotonic() >= deadline:
            raise WaitTimeoutError(
                f"server {server_id} did not reach {status} state after {poll.timeout} seconds "
                f"(last status {current.status or 'unknown'})"
            )

        logger.debug("Server %s is %s, waiting for %s", server_id, current.status, status)
        if poll.cancel is not None:
            if poll.cancel.wait(poll.interval):
                raise OperationCancelled(f"cancelled while waiting for server {server_id}")
        else:
            time.sleep(poll.interval)


@contextmanager
def _rollback_on_failure(
    backend: ComputeBackend, name: str, scope: OwnershipScope, poll: PollSettings
):
    """Delete whatever was created under ``name`` if the block raises.

    The block records the server ID in the yielded dict once known. The
    original exception always propagates; rollback errors are only logged.
    """
    created: dict = {}
    try:
        yield created
    except Exception as exc:
        target = created.get("id") or getattr(exc, "resource_id", "") or name
        logger.warning("Creating server %s failed, rolling back %s: %s", name, target, exc)
        try:
            # The rollback must finish even if the caller cancelled.
            delete_server(backend, target, scope, wait=True, poll=replace(poll, cancel=None))
        except Exception:
            logger.exception("Rollback of server %s failed", target)
        raise


def _create_and_wait(
    backend: ComputeBackend, attrs: dict, scope: OwnershipScope, poll: PollSettings
) -> ManagedServer:
    name = attrs["name"]
    with _rollback_on_failure(backend, name, scope, poll) as created:
        try:
            server = backend.create_server(attrs)
        except ProviderError as exc:
            raise with_context(exc, f"failed to create server {name}") from exc
        created["id"] = server.get("id", "")
        logger.info("Submitted server %s (%s), waiting for %s", name, created["id"], ACTIVE)

        wait_for_status(backend, created["id"], ACTIVE, scope, poll)
        return resolver.get_server(backend, created["id"], scope)


def create_server_from_image(
    backend: ComputeBackend, attrs: dict, scope: OwnershipScope, poll: PollSettings
) -> ManagedServer:
    """Create a server booting from an image and wait until it is ACTIVE."""
    return _create_and_wait(backend, attrs, scope, poll)


def create_server_from_volume(
    backend: ComputeBackend, attrs: dict, scope: OwnershipScope, poll: PollSettings
) -> ManagedServer:
    """Create a server booting from a new root volume and wait until it is ACTIVE."""
    if not attrs.get("block_device_mapping"):
        raise ValidationError("boot from volume requires a block_device_mapping")
    return _create_and_wait(backend, attrs, scope, poll)


def _delete_server_by_id(
    backend: ComputeBackend, server_id: str, scope: OwnershipScope, wait: bool, poll: PollSettings
) -> None:
    try:
        backend.force_delete_server(server_id)
    except NotFoundError:
        return

    if wait:
        wait_for_status(backend, server_id, DELETED, scope, poll)


def delete_server(
    backend: ComputeBackend,
    name_or_id: str,
    scope: OwnershipScope,
    wait: bool = True,
    poll: PollSettings = PollSettings(),
) -> None:
    """Delete every server in scope matching ``name_or_id``.

    Warning: a name may match several servers; all of them are deleted.
    A missing server counts as already deleted.
    """
    try:
        matches = resolver.resolve_servers(backend, name_or_id, scope)
    except NotFoundError:
        logger.info("Server %s not found, nothing to delete", name_or_id)
        return
    except ProviderError as exc:
        raise with_context(exc, f"failed to find server {name_or_id}") from exc

    for server in matches:
        logger.info("Deleting server %s (%s)", server.name, server.id)
        try:
            _delete_server_by_id(backend, server.id, scope, wait, poll)
        except NotFoundError:
            continue
        except ProviderError as exc:
            raise with_context(exc, f"failed to delete server with ID {server.id}") from exc


def _power_action(
    backend: ComputeBackend,
    name_or_id: str,
    scope: OwnershipScope,
    desired_status: str,
    action,
    verb: str,
) -> None:
    server = resolver.get_server(backend, name_or_id, scope)
    if server.status == desired_status:
        logger.debug("Server %s already %s", server.id, desired_status)
        return

    try:
        action(server.id)
    except ProviderError as exc:
        raise with_context(exc, f"failed to {verb} server {server.id}") from exc
    logger.info("Requested %s of server %s (%s)", verb, server.name, server.id)


def start_server(backend: ComputeBackend, name_or_id: str, scope: OwnershipScope) -> None:
    _power_action(backend, name_or_id, scope, ACTIVE, backend.start_server, "start")


def stop_server(backend: ComputeBackend, name_or_id: str, scope: OwnershipScope) -> None:
    _power_action(backend, name_or_id, scope, SHUTOFF, backend.stop_server, "stop")
