"""Default tool selection and boot script rendering.

Both are injected into the provider, so tests and alternative deployments can
swap them without touching global state.
"""

from __future__ import annotations

import base64
import shlex

from openstack_provider.core.errors import ValidationError

OS_TYPE_TOOL_NAMES = {"linux": "linux", "windows": "win"}
OS_ARCH_TOOL_NAMES = {"amd64": "x64", "arm64": "arm64", "arm": "arm"}

RUNNER_DIR = "/home/runner/actions-runner"


def select_tools(os_type: str, os_arch: str, tools: list[dict]) -> dict:
    """Return the runner archive matching ``os_type`` / ``os_arch``."""
    want_os = OS_TYPE_TOOL_NAMES.get(os_type)
    want_arch = OS_ARCH_TOOL_NAMES.get(os_arch)
    if want_os is None or want_arch is None:
        raise ValidationError(f"failed to get tools: unsupported OS {os_type}/{os_arch}")

    for tool in tools:
        if tool.get("os") == want_os and tool.get("architecture") == want_arch:
            return tool
    raise ValidationError(f"failed to get tools: no tools found for {os_type}/{os_arch}")


class ScriptRenderer:
    """Render a bash (linux) or PowerShell (windows) boot script."""

    def __call__(self, spec, runner_name: str) -> str:
        os_type = spec.bootstrap.os_type
        if os_type == "linux":
            return self._render_linux(spec, runner_name)
        if os_type == "windows":
            return self._render_windows(spec, runner_name)
        raise ValidationError(f"unsupported OS type for cloud config: {os_type}")

    def _render_linux(self, spec, runner_name: str) -> str:
        bootstrap = spec.bootstrap
        lines = ["#!/bin/bash", "set -euo pipefail"]
        if spec.enable_boot_debug:
            lines.append("set -x")

        lines.append("export DEBIAN_FRONTEND=noninteractive")
        for key, value in sorted(spec.extra_context.items()):
            lines.append(f"export {_env_name(key)}={shlex.quote(value)}")

        if not spec.disable_updates:
            lines += ["apt-get update -qq", "apt-get upgrade -y -qq"]
        packages = [] if spec.disable_updates else ["curl", "tar"]
        packages += spec.extra_packages
        if packages:
            lines.append("apt-get install -y -qq " + " ".join(shlex.quote(p) for p in packages))

        if spec.pre_install_scripts:
            lines.append("mkdir -p /run/garm/pre-install")
        for name in sorted(spec.pre_install_scripts):
            path = f"/run/garm/pre-install/{name}"
            encoded = base64.b64encode(spec.pre_install_scripts[name]).decode("ascii")
            lines += [
                f"echo {encoded} | base64 -d > {shlex.quote(path)}",
                f"chmod +x {shlex.quote(path)}",
                shlex.quote(path),
            ]

        if spec.runner_install_template is not None:
            encoded = base64.b64encode(spec.runner_install_template).decode("ascii")
            lines += [
                "mkdir -p /run/garm",
                f"echo {encoded} | base64 -d > /run/garm/install-runner.sh",
                "chmod +x /run/garm/install-runner.sh",
                "/run/garm/install-runner.sh",
            ]
            return "\n".join(lines) + "\n"

        tools = spec.tools
        labels = ",".join(bootstrap.labels)
        lines += [
            f"RUNNER_NAME={shlex.quote(runner_name)}",
            f"METADATA_URL={shlex.quote(bootstrap.metadata_url)}",
            f"CALLBACK_URL={shlex.quote(bootstrap.callback_url)}",
            f"INSTANCE_TOKEN={shlex.quote(bootstrap.instance_token)}",
            f"mkdir -p {RUNNER_DIR}",
            f"cd {RUNNER_DIR}",
            f"curl -fsSL -o {shlex.quote(tools.get('filename') or 'runner.tar.gz')} "
            f"{shlex.quote(tools['download_url'])}",
            f"tar xzf {shlex.quote(tools.get('filename') or 'runner.tar.gz')}",
            'TOKEN=$(curl -fsSL -H "Authorization: Bearer ${INSTANCE_TOKEN}" '
            '"${METADATA_URL}/runner-registration-token/")',
            f"./config.sh --unattended --url {shlex.quote(bootstrap.repo_url)} "
            f'--token "$TOKEN" --name "$RUNNER_NAME" --labels {shlex.quote(labels)} --ephemeral',
            "./svc.sh install && ./svc.sh start",
            'curl -fsSL -X POST -H "Authorization: Bearer ${INSTANCE_TOKEN}" '
            '-d \'{"status": "idle", "message": "runner installed"}\' "${CALLBACK_URL}"',
        ]
        return "\n".join(lines) + "\n"

    def _render_windows(self, spec, runner_name: str) -> str:
        bootstrap = spec.bootstrap
        tools = spec.tools
        lines = ["#ps1_sysnative", '$ErrorActionPreference = "Stop"']
        if spec.enable_boot_debug:
            lines.append("Set-PSDebug -Trace 1")
        for key, value in sorted(spec.extra_context.items()):
            lines.append(f"$env:{_env_name(key)} = {_ps_quote(value)}")

        if spec.runner_install_template is not None:
            encoded = base64.b64encode(spec.runner_install_template).decode("ascii")
            lines += [
                f"$script = [Text.Encoding]::UTF8.GetString([Convert]::FromBase64String('{encoded}'))",
                "Invoke-Expression $script",
            ]
            return "\r\n".join(lines) + "\r\n"

        lines += [
            "New-Item -ItemType Directory -Force -Path C:\\actions-runner | Out-Null",
            "Set-Location C:\\actions-runner",
            f"Invoke-WebRequest -Uri {_ps_quote(tools['download_url'])} -OutFile runner.zip",
            "Expand-Archive -Path runner.zip -DestinationPath . -Force",
            f"$headers = @{{Authorization = 'Bearer ' + {_ps_quote(bootstrap.instance_token)}}}",
            f"$token = Invoke-RestMethod -Headers $headers -Uri ({_ps_quote(bootstrap.metadata_url)} "
            "+ '/runner-registration-token/')",
            f"./config.cmd --unattended --url {_ps_quote(bootstrap.repo_url)} --token $token "
            f"--name {_ps_quote(runner_name)} --labels {_ps_quote(','.join(bootstrap.labels))} "
            "--ephemeral --runasservice",
        ]
        return "\r\n".join(lines) + "\r\n"


def _env_name(key: str) -> str:
    return "".join(ch if ch.isalnum() else "_" for ch in key).upper()


def _ps_quote(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"
