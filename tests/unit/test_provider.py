"""Unit tests for the provider operations, wired to the mock backend."""

from __future__ import annotations

import base64
import json
from dataclasses import replace

import pytest

from conftest import CONTROLLER_ID, IMAGE_ID, NETWORK_ID, POOL_ID, make_bootstrap, owned_tags
from openstack_provider.core.errors import AmbiguousMatchError, NotFoundError, ValidationError
from openstack_provider.core.provider import OpenStackProvider


def test_create_instance_from_image(provider, backend):
    instance = provider.create_instance(make_bootstrap())

    assert instance.name == "test-instance"
    assert instance.status == "running"
    assert instance.os_type == "linux"
    assert instance.os_arch == "amd64"
    assert instance.os_name == "ubuntu"
    assert instance.os_version == "22.04"
    assert instance.addresses == [{"address": "10.0.0.11", "type": "private"}]

    attrs = backend.created[0]
    assert attrs["image_id"] == IMAGE_ID
    assert attrs["flavor_id"] == "flavor-uuid"
    assert attrs["networks"] == [{"uuid": NETWORK_ID}]
    assert attrs["security_groups"] == [{"name": "default"}]
    assert attrs["tags"] == owned_tags()
    assert attrs["metadata"]["garm-controller-id"] == CONTROLLER_ID
    assert "block_device_mapping" not in attrs

    user_data = base64.b64decode(attrs["user_data"]).decode()
    assert user_data.startswith("#!/bin/bash")
    assert "http://test.com/runner.tar.gz" in user_data


def test_create_instance_from_volume(provider, backend):
    bootstrap = make_bootstrap(
        extra_specs=json.dumps(
            {"boot_from_volume": True, "boot_disk_size": 150, "storage_backend": "cinder_nvme"}
        )
    )

    provider.create_instance(bootstrap)

    attrs = backend.created[0]
    assert "image_id" not in attrs
    assert attrs["block_device_mapping"][0]["volume_size"] == 150
    assert attrs["block_device_mapping"][0]["volume_type"] == "cinder_nvme"
    assert attrs["block_device_mapping"][0]["uuid"] == IMAGE_ID


def test_create_instance_rejects_disallowed_image_owner(config, backend):
    provider = OpenStackProvider(
        config=replace(config, allowed_image_owners=["owner2"]),
        controller_id=CONTROLLER_ID,
        backend=backend,
    )

    with pytest.raises(ValidationError, match="image owner owner1 is not allowed"):
        provider.create_instance(make_bootstrap())

    assert backend.created == []


def test_extra_specs_can_clear_owner_allowlist(config, backend):
    provider = OpenStackProvider(
        config=replace(config, allowed_image_owners=["owner2"]),
        controller_id=CONTROLLER_ID,
        backend=backend,
    )

    provider.create_instance(make_bootstrap(extra_specs='{"allowed_image_owners": []}'))

    assert len(backend.created) == 1


def test_create_instance_unknown_flavor(provider, backend):
    with pytest.raises(NotFoundError, match="failed to resolve flavor m1.huge"):
        provider.create_instance(make_bootstrap(flavor="m1.huge"))

    assert backend.created == []


def test_create_instance_image_not_visible(config, backend):
    provider = OpenStackProvider(
        config=replace(config, image_visibility="private"),
        controller_id=CONTROLLER_ID,
        backend=backend,
    )

    with pytest.raises(NotFoundError, match="failed to resolve image ubuntu-22.04"):
        provider.create_instance(make_bootstrap())


def test_create_instance_unsupported_os(provider, backend):
    tools = [{"os": "win", "architecture": "x64", "download_url": "http://test.com/runner.zip"}]

    with pytest.raises(ValidationError, match="failed to get tools"):
        provider.create_instance(make_bootstrap(os_type="freebsd", tools=tools))

    assert backend.created == []


def test_create_instance_uses_injected_renderer(config, backend):
    rendered = []

    def renderer(spec, runner_name):
        rendered.append(runner_name)
        return "custom"

    provider = OpenStackProvider(
        config=config, controller_id=CONTROLLER_ID, backend=backend, userdata_renderer=renderer
    )
    provider.create_instance(make_bootstrap())

    assert rendered == ["test-instance"]
    assert base64.b64decode(backend.created[0]["user_data"]) == b"custom"


def test_create_instance_windows(provider, backend):
    tools = [{"os": "win", "architecture": "x64", "download_url": "http://test.com/runner.zip"}]

    provider.create_instance(make_bootstrap(os_type="windows", tools=tools))

    user_data = base64.b64decode(backend.created[0]["user_data"]).decode()
    assert user_data.startswith("#ps1_sysnative")


def test_get_instance(provider, backend):
    server_id = backend.add_server("runner-1", owned_tags(), status="SHUTOFF")

    assert provider.get_instance("runner-1").provider_id == server_id
    assert provider.get_instance(server_id).status == "stopped"


def test_get_instance_ambiguous(provider, backend):
    backend.add_server("runner-1", owned_tags(pool_id="pool-a"))
    backend.add_server("runner-1", owned_tags(pool_id="pool-b"))

    with pytest.raises(AmbiguousMatchError):
        provider.get_instance("runner-1")


def test_list_instances_by_pool(provider, backend):
    backend.add_server("runner-1", owned_tags())
    backend.add_server("runner-2", owned_tags())
    backend.add_server("runner-3", owned_tags(pool_id="other-pool"))
    backend.add_server("runner-4", owned_tags(controller_id="other-controller"))

    names = sorted(inst.name for inst in provider.list_instances(POOL_ID))

    assert names == ["runner-1", "runner-2"]


def test_delete_instance(provider, backend):
    server_id = backend.add_server("runner-1", owned_tags())

    provider.delete_instance("runner-1")
    provider.delete_instance("runner-1")

    assert backend.deleted == [server_id]


def test_remove_all_instances_is_noop(provider, backend):
    backend.add_server("runner-1", owned_tags())

    assert provider.remove_all_instances() is None
    assert backend.deleted == []


def test_start_and_stop_instance(provider, backend):
    server_id = backend.add_server("runner-1", owned_tags(), status="ACTIVE")

    provider.stop_instance("runner-1")
    provider.start_instance("runner-1")

    assert backend.stopped == [server_id]
    assert backend.started == [server_id]
