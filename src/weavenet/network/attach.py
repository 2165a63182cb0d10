"""Connect a container's network namespace to the bridge with a veth pair."""

from __future__ import annotations

import errno
from dataclasses import dataclass
from typing import Optional

import structlog
from pyroute2 import NetlinkError

from ..common.errors import ResourceCreationFailure
from .commands import CommandRunner, disable_offload, run_command
from .control import NetworkControl

LOGGER = structlog.get_logger("weavenet.network.attach")


@dataclass
class VethPair:
    host: str
    guest: str


def veth_names(container_ifname: str, container_pid: int) -> VethPair:
    """Pid-derived names, unique while the container is running."""

    return VethPair(
        host=f"v{container_ifname}pl{container_pid}",
        guest=f"v{container_ifname}pg{container_pid}",
    )


def attach(
    control: NetworkControl,
    bridge: str,
    container_pid: int,
    container_ifname: str,
    mtu: int,
    *,
    cidr: Optional[str] = None,
    runner: CommandRunner = run_command,
) -> str:
    """Wire the container with pid ``container_pid`` into ``bridge``.

    Returns the host-side interface name.
    """

    pair = veth_names(container_ifname, container_pid)
    log = LOGGER.bind(bridge=bridge, pid=container_pid, host_ifname=pair.host)
    log.debug("Creating veth pair", guest_ifname=pair.guest, mtu=mtu)
    try:
        control.create_veth(pair.host, pair.guest, mtu=mtu)
    except NetlinkError as exc:
        # An existing pair with this name is not ours to remove.
        if exc.code != errno.EEXIST:
            _discard(control, pair.host)
        raise ResourceCreationFailure(f"Failed to create veth pair {pair.host}: {exc}") from exc

    try:
        control.set_link(pair.host, master=bridge)
        control.set_link(pair.host, state="up")
        control.move_to_namespace(pair.guest, container_pid)
        control.set_link(pair.guest, pid=container_pid, ifname=container_ifname)
        if cidr:
            control.add_address(container_ifname, cidr, pid=container_pid)
        disable_offload(container_ifname, pid=container_pid, runner=runner)
        control.set_link(container_ifname, pid=container_pid, state="up")
    except (NetlinkError, ResourceCreationFailure) as exc:
        _discard(control, pair.host)
        raise ResourceCreationFailure(
            f"Failed to attach container pid {container_pid} to {bridge}: {exc}"
        ) from exc

    log.info("Attached container", container_ifname=container_ifname, cidr=cidr)
    return pair.host


def _discard(control: NetworkControl, host_ifname: str) -> None:
    # Removing either end of a veth pair removes both.
    try:
        control.delete_link(host_ifname)
    except NetlinkError as exc:
        LOGGER.debug("Failed to remove veth after error", host_ifname=host_ifname, error=str(exc))
