"""Bridge lifecycle: create the weave bridge once, bring it up every time."""

from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Optional, Sequence

import structlog
from pyroute2 import NetlinkError

from ..common.errors import ResourceCreationFailure
from .commands import CommandRunner, disable_offload, run_command
from .control import NetworkControl

LOGGER = structlog.get_logger("weavenet.network.bridge")

MULTICAST_ROUTE = "224.0.0.0/4"


@dataclass
class BridgeInfo:
    name: str
    address: str
    mtu: int
    created: bool


def random_mac(rng: Optional[random.Random] = None) -> str:
    """Random unicast, locally-administered hardware address."""

    rng = rng or random.SystemRandom()
    octets = [rng.randrange(256) for _ in range(6)]
    octets[0] = (octets[0] & 0xFE) | 0x02
    return ":".join(f"{octet:02x}" for octet in octets)


def placeholder_name(container_ifname: str) -> str:
    return f"v{container_ifname}du"


def ensure_bridge(
    control: NetworkControl,
    name: str,
    mtu: int,
    *,
    container_ifname: str = "ethwe",
    runner: CommandRunner = run_command,
) -> BridgeInfo:
    """Make sure the bridge exists with a stable MAC and a large MTU, and is up.

    A freshly created bridge reports the default MTU and refuses a direct
    increase until a member allows it; the bridge tracks the lowest member
    MTU, so a temporary high-MTU dummy member lifts it and the bridge keeps
    the value once the dummy is removed.
    """

    created = False
    try:
        if not control.link_exists(name):
            LOGGER.info("Creating bridge", bridge=name, mtu=mtu)
            control.create_link(name, "bridge")
            created = True
            control.set_link(name, address=random_mac())
            _raise_bridge_mtu(control, name, mtu, placeholder_name(container_ifname))
    except NetlinkError as exc:
        raise ResourceCreationFailure(f"Failed to create bridge {name}: {exc}") from exc

    try:
        disable_offload(name, runner=runner)
    except ResourceCreationFailure as exc:
        LOGGER.warning("Could not disable offload on bridge", bridge=name, error=str(exc))

    try:
        control.set_link(name, state="up")
        info = control.link_info(name)
    except NetlinkError as exc:
        raise ResourceCreationFailure(f"Failed to bring up bridge {name}: {exc}") from exc

    LOGGER.debug("Bridge ready", bridge=name, address=info.address, mtu=info.mtu, created=created)
    return BridgeInfo(name=name, address=info.address, mtu=info.mtu, created=created)


def _raise_bridge_mtu(control: NetworkControl, bridge: str, mtu: int, placeholder: str) -> None:
    # Left over if an earlier run died between create and delete.
    control.delete_link(placeholder)
    control.create_link(placeholder, "dummy", mtu=mtu)
    try:
        control.set_link(placeholder, master=bridge)
    finally:
        control.delete_link(placeholder)


def expose(control: NetworkControl, name: str, cidr: str, *, routes: Sequence[str] = ()) -> bool:
    """Give the host an address on the bridge; ``False`` if it already had it.

    Each of ``routes`` is pointed at the bridge with link scope, replacing any
    existing route to the same destination.
    """

    try:
        added = control.add_address(name, cidr)
    except NetlinkError as exc:
        raise ResourceCreationFailure(f"Failed to add {cidr} to {name}: {exc}") from exc
    if added:
        LOGGER.info("Exposed bridge address", bridge=name, cidr=cidr)
    else:
        LOGGER.debug("Bridge address already present", bridge=name, cidr=cidr)
    for route in routes:
        try:
            control.replace_route(route, name)
        except NetlinkError as exc:
            raise ResourceCreationFailure(f"Failed to route {route} via {name}: {exc}") from exc
        LOGGER.info("Routed via bridge", bridge=name, route=route)
    return added
