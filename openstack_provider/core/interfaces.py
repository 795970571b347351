"""Abstract interfaces for provider backends and collaborators.

Core logic depends only on these protocols, never on openstacksdk directly.
Backends return plain dicts shaped like compute / image / network API bodies.
"""

from __future__ import annotations

from typing import Protocol


class ComputeBackend(Protocol):
    """The slice of the compute, image and network APIs the provider uses.

    Missing resources raise ``NotFoundError``; any other failure raises
    ``RemoteAPIError``.
    """

    # --- Servers ---

    def get_server(self, server_id: str) -> dict:
        """Get a single server by ID."""
        ...

    def list_servers(self, tags: list[str]) -> list[dict]:
        """List servers carrying every one of ``tags``."""
        ...

    def create_server(self, attrs: dict) -> dict:
        """Submit a server creation request and return the initial body."""
        ...

    def force_delete_server(self, server_id: str) -> None:
        """Force-delete a server by ID."""
        ...

    def start_server(self, server_id: str) -> None:
        ...

    def stop_server(self, server_id: str) -> None:
        ...

    # --- Flavors ---

    def get_flavor(self, flavor_id: str) -> dict:
        ...

    def list_flavors(self) -> list[dict]:
        ...

    # --- Images ---

    def get_image(self, image_id: str) -> dict:
        ...

    def list_images(self, name: str | None = None, visibility: str | None = None) -> list[dict]:
        """List images, optionally filtered by name and visibility."""
        ...

    # --- Networks ---

    def get_network(self, network_id: str) -> dict:
        ...

    def list_networks(self) -> list[dict]:
        ...


class ToolFetcher(Protocol):
    """Pick the runner tools archive matching an OS type and architecture."""

    def __call__(self, os_type: str, os_arch: str, tools: list[dict]) -> dict:
        ...


class UserDataRenderer(Protocol):
    """Render the boot script handed to the server as user data."""

    def __call__(self, spec, runner_name: str) -> str:
        ...
