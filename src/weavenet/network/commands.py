"""Privilege and tool checks plus helpers for shelling out to system utilities."""

from __future__ import annotations

import os
import shutil
import subprocess
from dataclasses import dataclass
from typing import Callable, Iterable, Optional, Sequence

import structlog

from ..common.errors import PrecheckFailure, ResourceCreationFailure

LOGGER = structlog.get_logger("weavenet.network.commands")

OFFLOAD_TOOL = "ethtool"
NAMESPACE_TOOL = "nsenter"


@dataclass
class CommandResult:
    args: list[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def message(self) -> str:
        return self.stderr.strip() or self.stdout.strip()


CommandRunner = Callable[[Sequence[str]], CommandResult]


def run_command(args: Sequence[str]) -> CommandResult:
    """Run a command and capture its output; a non-zero exit is not an error here."""

    argv = list(args)
    try:
        completed = subprocess.run(argv, capture_output=True, text=True, check=False)
    except FileNotFoundError as exc:
        raise PrecheckFailure(f"Required tool {argv[0]} not found") from exc
    return CommandResult(
        args=argv,
        returncode=completed.returncode,
        stdout=completed.stdout or "",
        stderr=completed.stderr or "",
    )


def tool_available(name: str) -> bool:
    return shutil.which(name) is not None


def require_privileges() -> None:
    if hasattr(os, "geteuid") and os.geteuid() != 0:
        raise PrecheckFailure("weave must be run as 'root'")


def require_tools(tools: Iterable[str]) -> None:
    missing = [tool for tool in tools if not tool_available(tool)]
    if missing:
        raise PrecheckFailure(f"Required tools not found: {', '.join(missing)}")


def warn_missing_tools(tools: Iterable[str]) -> list[str]:
    missing = [tool for tool in tools if not tool_available(tool)]
    for tool in missing:
        LOGGER.warning("Optional tool not found", tool=tool)
    return missing


def namespace_command(pid: int, args: Sequence[str]) -> list[str]:
    return [NAMESPACE_TOOL, f"--net=/proc/{pid}/ns/net", *args]


def disable_offload(
    ifname: str,
    *,
    pid: Optional[int] = None,
    runner: CommandRunner = run_command,
) -> bool:
    """Turn off tx checksum offload on ``ifname``, inside the netns of ``pid`` if given.

    Returns ``False`` without touching the device when the tools are missing.
    """

    if not tool_available(OFFLOAD_TOOL):
        LOGGER.warning("Offload tool missing; leaving offload enabled", tool=OFFLOAD_TOOL, ifname=ifname)
        return False
    args = [OFFLOAD_TOOL, "-K", ifname, "tx", "off"]
    if pid is not None:
        if not tool_available(NAMESPACE_TOOL):
            LOGGER.warning(
                "Namespace tool missing; leaving offload enabled",
                tool=NAMESPACE_TOOL,
                ifname=ifname,
                pid=pid,
            )
            return False
        args = namespace_command(pid, args)
    result = runner(args)
    if not result.ok:
        raise ResourceCreationFailure(f"Failed to disable offload on {ifname}: {result.message}")
    LOGGER.debug("Disabled tx offload", ifname=ifname, pid=pid)
    return True
