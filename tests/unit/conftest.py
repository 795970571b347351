"""Shared fixtures for unit tests — uses the mock backend, no cloud needed."""

import pytest
import sys
import os

# Add project root to path so openstack_provider is importable
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", ".."))

from openstack_provider.backends.mock.compute import MockComputeBackend
from openstack_provider.core.models import BootstrapInstance, OwnershipScope
from openstack_provider.core.orchestrator import PollSettings
from openstack_provider.core.provider import OpenStackProvider
from openstack_provider.shared.config import Config


CONTROLLER_ID = "my-controller-id"
POOL_ID = "test-pool"
NETWORK_ID = "542b68dd-4b3d-459d-8531-34d5e779d4d6"
IMAGE_ID = "aee1d242-730f-431f-88c1-87630c0f07ba"

SAMPLE_FLAVOR = {"id": "flavor-uuid", "name": "m1.small", "vcpus": 1, "ram": 2048, "disk": 20}
SAMPLE_IMAGE = {
    "id": IMAGE_ID,
    "name": "ubuntu-22.04",
    "owner": "owner1",
    "visibility": "public",
    "os_distro": "ubuntu",
    "os_version": "22.04",
}
SAMPLE_NETWORK = {"id": NETWORK_ID, "name": "private"}
SAMPLE_TOOLS = [
    {
        "os": "linux",
        "architecture": "x64",
        "download_url": "http://test.com/runner.tar.gz",
        "filename": "runner.tar.gz",
        "sha256_checksum": "sha256:1123",
        "temp_download_token": "test-token",
    }
]


def make_bootstrap(**overrides) -> BootstrapInstance:
    fields = {
        "name": "test-instance",
        "pool_id": POOL_ID,
        "flavor": "m1.small",
        "image": "ubuntu-22.04",
        "os_type": "linux",
        "os_arch": "amd64",
        "tools": SAMPLE_TOOLS,
        "instance_token": "test-token",
        "callback_url": "https://garm.example.com/api/v1/callbacks",
        "metadata_url": "https://garm.example.com/api/v1/metadata",
        "repo_url": "https://github.com/example/repo",
        "labels": ["openstack", "linux"],
    }
    fields.update(overrides)
    return BootstrapInstance(**fields)


def owned_tags(controller_id: str = CONTROLLER_ID, pool_id: str = POOL_ID) -> list[str]:
    return [f"garm-pool-id={pool_id}", f"garm-controller-id={controller_id}"]


@pytest.fixture
def backend():
    return MockComputeBackend(
        flavors=[SAMPLE_FLAVOR],
        images=[SAMPLE_IMAGE],
        networks=[SAMPLE_NETWORK],
    )


@pytest.fixture
def config():
    return Config(
        cloud="mycloud",
        network_id=NETWORK_ID,
        default_security_groups=["default"],
        image_visibility="public",
        boot_timeout=5,
        poll_interval=0,
    )


@pytest.fixture
def scope():
    return OwnershipScope(controller_id=CONTROLLER_ID)


@pytest.fixture
def poll():
    return PollSettings(timeout=5, interval=0)


@pytest.fixture
def provider(config, backend):
    return OpenStackProvider(config=config, controller_id=CONTROLLER_ID, backend=backend)
