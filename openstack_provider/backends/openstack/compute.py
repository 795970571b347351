"""OpenStack compute backend — Nova, Glance and Neutron through openstacksdk."""

from __future__ import annotations

from contextlib import contextmanager

import openstack.connection
from keystoneauth1 import exceptions as ks_exc
from openstack import exceptions as os_exc
from openstack.config import loader

from openstack_provider.core.errors import ConfigError, NotFoundError, RemoteAPIError
from openstack_provider.shared.config import Config

# Enables filtering by tags and volume types on boot-from-volume.
COMPUTE_MICROVERSION = "2.67"


@contextmanager
def _translate_errors(action: str):
    try:
        yield
    except os_exc.NotFoundException as exc:
        raise NotFoundError(f"{action}: {exc}") from exc
    except os_exc.SDKException as exc:
        raise RemoteAPIError(f"{action}: {exc}", status_code=getattr(exc, "status_code", None)) from exc
    except ks_exc.ClientException as exc:
        # Transport and auth failures are raised by keystoneauth, not the SDK.
        raise RemoteAPIError(f"{action}: {exc}", status_code=getattr(exc, "http_status", None)) from exc


class OpenStackComputeBackend:
    def __init__(
        self,
        cloud: str,
        clouds_file: str,
        public_clouds_file: str = "",
        secure_clouds_file: str = "",
        connection: openstack.connection.Connection | None = None,
    ):
        if connection is None:
            try:
                cloud_config = loader.OpenStackConfig(
                    config_files=[clouds_file],
                    vendor_files=[public_clouds_file] if public_clouds_file else None,
                    secure_files=[secure_clouds_file] if secure_clouds_file else None,
                )
                region = cloud_config.get_one(cloud=cloud, compute_api_version=COMPUTE_MICROVERSION)
                connection = openstack.connection.Connection(config=region)
            except os_exc.ConfigException as exc:
                raise ConfigError(f"failed to load cloud {cloud}: {exc}") from exc
        self._conn = connection

    @classmethod
    def from_config(cls, config: Config) -> "OpenStackComputeBackend":
        creds = config.credentials
        return cls(
            cloud=config.cloud,
            clouds_file=creds.clouds,
            public_clouds_file=creds.public_clouds,
            secure_clouds_file=creds.secure_clouds,
        )

    # --- Servers ---

    def get_server(self, server_id: str) -> dict:
        with _translate_errors(f"failed to get server {server_id}"):
            return self._conn.compute.get_server(server_id).to_dict()

    def list_servers(self, tags: list[str]) -> list[dict]:
        with _translate_errors("failed to list servers"):
            return [
                server.to_dict()
                for server in self._conn.compute.servers(details=True, tags=",".join(tags))
            ]

    def create_server(self, attrs: dict) -> dict:
        with _translate_errors(f"failed to create server {attrs.get('name')}"):
            return self._conn.compute.create_server(**attrs).to_dict()

    def force_delete_server(self, server_id: str) -> None:
        with _translate_errors(f"failed to delete server {server_id}"):
            self._conn.compute.delete_server(server_id, ignore_missing=False, force=True)

    def start_server(self, server_id: str) -> None:
        with _translate_errors(f"failed to start server {server_id}"):
            self._conn.compute.start_server(server_id)

    def stop_server(self, server_id: str) -> None:
        with _translate_errors(f"failed to stop server {server_id}"):
            self._conn.compute.stop_server(server_id)

    # --- Flavors ---

    def get_flavor(self, flavor_id: str) -> dict:
        with _translate_errors(f"failed to get flavor {flavor_id}"):
            return self._conn.compute.get_flavor(flavor_id).to_dict()

    def list_flavors(self) -> list[dict]:
        with _translate_errors("failed to list flavors"):
            return [flavor.to_dict() for flavor in self._conn.compute.flavors(details=True)]

    # --- Images ---

    def get_image(self, image_id: str) -> dict:
        with _translate_errors(f"failed to get image {image_id}"):
            return self._conn.image.get_image(image_id).to_dict()

    def list_images(self, name: str | None = None, visibility: str | None = None) -> list[dict]:
        query = {}
        if name:
            query["name"] = name
        if visibility:
            query["visibility"] = visibility
        with _translate_errors("failed to list images"):
            return [image.to_dict() for image in self._conn.image.images(**query)]

    # --- Networks ---

    def get_network(self, network_id: str) -> dict:
        with _translate_errors(f"failed to get network {network_id}"):
            return self._conn.network.get_network(network_id).to_dict()

    def list_networks(self) -> list[dict]:
        with _translate_errors("failed to list networks"):
            return [network.to_dict() for network in self._conn.network.networks()]
