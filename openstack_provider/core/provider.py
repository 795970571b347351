"""Provider — the operations exposed to the pool manager."""

from __future__ import annotations

import logging
import threading
from dataclasses import replace

from openstack_provider.core import orchestrator, resolver
from openstack_provider.core.errors import ProviderError, ValidationError, with_context
from openstack_provider.core.interfaces import ComputeBackend, ToolFetcher, UserDataRenderer
from openstack_provider.core.mapper import server_to_instance
from openstack_provider.core.models import BootstrapInstance, OwnershipScope, ProviderInstance
from openstack_provider.core.spec import (
    boot_from_volume_attrs,
    new_machine_spec,
    server_create_attrs,
    with_image_properties,
)
from openstack_provider.core.userdata import ScriptRenderer, select_tools
from openstack_provider.shared.config import Config

logger = logging.getLogger(__name__)


class OpenStackProvider:
    def __init__(
        self,
        config: Config,
        controller_id: str,
        backend: ComputeBackend,
        tool_fetcher: ToolFetcher | None = None,
        userdata_renderer: UserDataRenderer | None = None,
        cancel: threading.Event | None = None,
    ):
        self._config = config
        self._controller_id = controller_id
        self._backend = backend
        self._tool_fetcher = tool_fetcher or select_tools
        self._render_userdata = userdata_renderer or ScriptRenderer()
        self._poll = orchestrator.PollSettings(
            timeout=config.boot_timeout,
            interval=config.poll_interval,
            cancel=cancel,
        )

    @property
    def scope(self) -> OwnershipScope:
        return OwnershipScope(controller_id=self._controller_id)

    def create_instance(self, bootstrap: BootstrapInstance) -> ProviderInstance:
        """Create a server for ``bootstrap`` and wait until it is running."""
        spec = new_machine_spec(bootstrap, self._config, self._controller_id, self._tool_fetcher)

        try:
            flavor = resolver.find_flavor(self._backend, spec.flavor)
        except ProviderError as exc:
            raise with_context(exc, f"failed to resolve flavor {spec.flavor}") from exc

        try:
            network = resolver.find_network(self._backend, spec.network_id)
        except ProviderError as exc:
            raise with_context(exc, f"failed to resolve network {spec.network_id}") from exc

        try:
            image = resolver.find_image(self._backend, spec.image, spec.image_visibility)
        except ProviderError as exc:
            raise with_context(exc, f"failed to resolve image {spec.image}") from exc

        owner = image.get("owner") or image.get("owner_id")
        if spec.allowed_image_owners and owner not in spec.allowed_image_owners:
            raise ValidationError(
                f"image owner {owner} is not allowed, allowed owners: {spec.allowed_image_owners}"
            )

        spec = with_image_properties(spec, image)
        spec = replace(spec, user_data=self._render_userdata(spec, bootstrap.name))

        attrs = server_create_attrs(spec, flavor, network, image)
        scope = OwnershipScope(controller_id=self._controller_id, pool_id=bootstrap.pool_id)
        if spec.boot_from_volume:
            attrs = boot_from_volume_attrs(spec, attrs)
            server = orchestrator.create_server_from_volume(self._backend, attrs, scope, self._poll)
        else:
            server = orchestrator.create_server_from_image(self._backend, attrs, scope, self._poll)

        logger.info("Server %s (%s) is %s", server.name, server.id, server.status)
        return server_to_instance(server)

    def delete_instance(self, instance: str) -> None:
        """Delete ``instance``. Deleting a missing instance succeeds."""
        orchestrator.delete_server(self._backend, instance, self.scope, wait=True, poll=self._poll)

    def get_instance(self, instance: str) -> ProviderInstance:
        return server_to_instance(resolver.get_server(self._backend, instance, self.scope))

    def list_instances(self, pool_id: str) -> list[ProviderInstance]:
        scope = OwnershipScope(controller_id=self._controller_id, pool_id=pool_id)
        return [server_to_instance(srv) for srv in resolver.list_servers(self._backend, scope)]

    def remove_all_instances(self) -> None:
        """Fleet-wide teardown is left to the pool manager."""
        return None

    def start_instance(self, instance: str) -> None:
        orchestrator.start_server(self._backend, instance, self.scope)

    def stop_instance(self, instance: str, force: bool = False) -> None:
        orchestrator.stop_server(self._backend, instance, self.scope)
