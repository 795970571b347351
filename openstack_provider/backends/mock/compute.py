"""Mock compute backend for testing."""

from __future__ import annotations

import copy
import uuid

from openstack_provider.core.errors import NotFoundError


class MockComputeBackend:
    """In-memory stand-in for the compute, image and network APIs.

    Newly created servers report ``boot_statuses`` on successive reads (the
    last one sticks). Per-server scripts can be set with ``script_status``.
    Set ``create_error`` or ``delete_errors`` to inject failures.
    """

    def __init__(
        self,
        flavors: list[dict] | None = None,
        images: list[dict] | None = None,
        networks: list[dict] | None = None,
        boot_statuses: list[str] | None = None,
    ):
        self.flavors = list(flavors or [])
        self.images = list(images or [])
        self.networks = list(networks or [])
        self.boot_statuses = list(boot_statuses or ["BUILD", "ACTIVE"])
        self.servers: dict[str, dict] = {}
        self.create_error: Exception | None = None
        self.delete_errors: dict[str, Exception] = {}
        self.created: list[dict] = []
        self.deleted: list[str] = []
        self.started: list[str] = []
        self.stopped: list[str] = []
        self._scripts: dict[str, list[str]] = {}

    def add_server(
        self,
        name: str,
        tags: list[str],
        status: str = "ACTIVE",
        server_id: str | None = None,
        **fields,
    ) -> str:
        server_id = server_id or str(uuid.uuid4())
        self.servers[server_id] = {
            "id": server_id,
            "name": name,
            "status": status,
            "tags": list(tags),
            "metadata": {},
            "addresses": {},
            **fields,
        }
        return server_id

    def script_status(self, server_id: str, statuses: list[str]) -> None:
        self._scripts[server_id] = list(statuses)

    # --- Servers ---

    def get_server(self, server_id: str) -> dict:
        server = self.servers.get(server_id)
        if server is None:
            raise NotFoundError(f"server {server_id} not found")
        script = self._scripts.get(server_id)
        if script:
            server["status"] = script.pop(0)
            if not script:
                del self._scripts[server_id]
        return copy.deepcopy(server)

    def list_servers(self, tags: list[str]) -> list[dict]:
        return [
            copy.deepcopy(server)
            for server in self.servers.values()
            if all(tag in server.get("tags", []) for tag in tags)
        ]

    def create_server(self, attrs: dict) -> dict:
        self.created.append(attrs)
        if self.create_error is not None:
            raise self.create_error

        server_id = self.add_server(
            attrs["name"],
            attrs.get("tags", []),
            status=self.boot_statuses[0],
            metadata=dict(attrs.get("metadata") or {}),
            addresses={
                "private": [
                    {"addr": f"10.0.0.{len(self.created) + 10}", "version": 4, "OS-EXT-IPS:type": "fixed"}
                ]
            },
        )
        self.script_status(server_id, self.boot_statuses)
        return copy.deepcopy(self.servers[server_id])

    def force_delete_server(self, server_id: str) -> None:
        if server_id in self.delete_errors:
            raise self.delete_errors[server_id]
        if server_id not in self.servers:
            raise NotFoundError(f"server {server_id} not found")
        self.deleted.append(server_id)
        del self.servers[server_id]
        self._scripts.pop(server_id, None)

    def start_server(self, server_id: str) -> None:
        self._require(server_id)
        self._scripts.pop(server_id, None)
        self.started.append(server_id)
        self.servers[server_id]["status"] = "ACTIVE"

    def stop_server(self, server_id: str) -> None:
        self._require(server_id)
        self._scripts.pop(server_id, None)
        self.stopped.append(server_id)
        self.servers[server_id]["status"] = "SHUTOFF"

    def _require(self, server_id: str) -> None:
        if server_id not in self.servers:
            raise NotFoundError(f"server {server_id} not found")

    # --- Flavors, images, networks ---

    def get_flavor(self, flavor_id: str) -> dict:
        return self._get(self.flavors, flavor_id, "flavor")

    def list_flavors(self) -> list[dict]:
        return copy.deepcopy(self.flavors)

    def get_image(self, image_id: str) -> dict:
        return self._get(self.images, image_id, "image")

    def list_images(self, name: str | None = None, visibility: str | None = None) -> list[dict]:
        return [
            copy.deepcopy(image)
            for image in self.images
            if (name is None or image.get("name") == name)
            and (visibility in (None, "all") or image.get("visibility") == visibility)
        ]

    def get_network(self, network_id: str) -> dict:
        return self._get(self.networks, network_id, "network")

    def list_networks(self) -> list[dict]:
        return copy.deepcopy(self.networks)

    @staticmethod
    def _get(items: list[dict], item_id: str, kind: str) -> dict:
        for item in items:
            if item.get("id") == item_id:
                return copy.deepcopy(item)
        raise NotFoundError(f"{kind} {item_id} not found")
