"""External provider entry point.

The pool manager runs this executable once per operation, passing the command
and identities through GARM_* environment variables and the bootstrap
document on stdin. These are thin wrappers that build backend dependencies,
call the cloud-agnostic provider and format the result. All business logic
lives in openstack_provider/core/.
"""

from __future__ import annotations

import argparse
import json
import logging
import signal
import sys
import threading
from importlib.metadata import PackageNotFoundError, version

from openstack_provider.core.errors import AmbiguousMatchError, NotFoundError, ProviderError

logger = logging.getLogger(__name__)

DIST_NAME = "garm-provider-openstack"

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_NOT_FOUND = 30
EXIT_DUPLICATE = 31


# ---- Shared helpers ----


def _get_provider(cancel: threading.Event):
    """Build an OpenStackProvider from the execution environment."""
    from openstack_provider.backends.openstack.compute import OpenStackComputeBackend
    from openstack_provider.core.provider import OpenStackProvider
    from openstack_provider.shared.config import CONTROLLER_ID, PROVIDER_CONFIG_FILE, load_config

    config = load_config(PROVIDER_CONFIG_FILE())
    return OpenStackProvider(
        config=config,
        controller_id=CONTROLLER_ID(),
        backend=OpenStackComputeBackend.from_config(config),
        cancel=cancel,
    )


def _dump(value) -> str:
    return json.dumps(value, indent=2)


def exit_code_for(exc: BaseException) -> int:
    if isinstance(exc, NotFoundError):
        return EXIT_NOT_FOUND
    if isinstance(exc, AmbiguousMatchError):
        return EXIT_DUPLICATE
    return EXIT_ERROR


def _package_version() -> str:
    try:
        return version(DIST_NAME)
    except PackageNotFoundError:
        return "unknown"


# ---- Commands ----


def handle_command(command: str, provider, stdin=None) -> str:
    """Run one provider command and return what should go to stdout."""
    from openstack_provider.core.models import BootstrapInstance
    from openstack_provider.shared.config import INSTANCE_ID, POOL_ID

    if command == "CreateInstance":
        raw = (stdin or sys.stdin).read()
        if not raw.strip():
            raise ProviderError("CreateInstance requires bootstrap parameters on stdin")
        try:
            bootstrap = BootstrapInstance.from_json(raw)
        except ValueError as exc:
            raise ProviderError(f"failed to decode bootstrap parameters: {exc}") from exc
        return _dump(provider.create_instance(bootstrap).to_dict())

    if command == "DeleteInstance":
        provider.delete_instance(INSTANCE_ID())
        return ""

    if command == "GetInstance":
        return _dump(provider.get_instance(INSTANCE_ID()).to_dict())

    if command == "ListInstances":
        return _dump([inst.to_dict() for inst in provider.list_instances(POOL_ID())])

    if command == "RemoveAllInstances":
        provider.remove_all_instances()
        return ""

    if command == "StartInstance":
        provider.start_instance(INSTANCE_ID())
        return ""

    if command == "StopInstance":
        provider.stop_instance(INSTANCE_ID(), force=False)
        return ""

    raise ProviderError(f"unknown command: {command}")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="GARM external provider for OpenStack")
    parser.add_argument("--version", action="store_true", help="Print version and exit")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging on stderr")
    args = parser.parse_args(argv)

    if args.version:
        print(_package_version())
        return EXIT_OK

    # stdout carries the command result; logs go to stderr.
    logging.basicConfig(
        stream=sys.stderr,
        level=logging.DEBUG if args.debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    cancel = threading.Event()
    for signum in (signal.SIGINT, signal.SIGTERM):
        signal.signal(signum, lambda *_: cancel.set())

    from openstack_provider.shared.config import COMMAND

    try:
        command = COMMAND()
        provider = _get_provider(cancel)
        output = handle_command(command, provider)
    except ProviderError as exc:
        logger.error("failed to run command: %s", exc)
        return exit_code_for(exc)

    if output:
        sys.stdout.write(output)
    return EXIT_OK


def run() -> None:
    sys.exit(main())
