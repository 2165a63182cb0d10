"""Narrow kernel networking interface used by the bridge and attachment code.

Everything that touches links, addresses, or routes goes through
:class:`NetworkControl` so the higher layers can be exercised with a fake
implementation and no root privilege.
"""

from __future__ import annotations

import errno
import ipaddress
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterator, Optional, Protocol

from pyroute2 import IPRoute, NetNS, NetlinkError

IFF_UP = 0x1
RT_SCOPE_LINK = 253


@dataclass
class LinkInfo:
    """Attributes read back from a live device."""

    name: str
    address: str
    mtu: int
    up: bool
    master: Optional[int] = None


class NetworkControl(Protocol):
    """Capability set needed to manage the bridge and container links.

    ``pid`` selects the network namespace of that process; ``None`` is the
    caller's own namespace.
    """

    def link_exists(self, ifname: str, *, pid: Optional[int] = None) -> bool:
        ...

    def link_info(self, ifname: str, *, pid: Optional[int] = None) -> LinkInfo:
        ...

    def create_link(self, ifname: str, kind: str, *, mtu: Optional[int] = None) -> None:
        ...

    def create_veth(self, ifname: str, peer: str, *, mtu: int) -> None:
        ...

    def delete_link(self, ifname: str, *, pid: Optional[int] = None) -> None:
        ...

    def set_link(self, ifname: str, /, *, pid: Optional[int] = None, **attributes: Any) -> None:
        """Set ``state``, ``address``, ``mtu``, ``master`` (a link name) or ``ifname`` (rename)."""
        ...

    def move_to_namespace(self, ifname: str, pid: int) -> None:
        ...

    def add_address(self, ifname: str, cidr: str, *, pid: Optional[int] = None) -> bool:
        """Assign ``cidr``; returns ``False`` if the address was already present."""
        ...

    def replace_route(self, destination: str, ifname: str, *, pid: Optional[int] = None) -> None:
        ...


def _no_device(ifname: str) -> NetlinkError:
    return NetlinkError(errno.ENODEV, f"Device {ifname} not found")


class NetlinkControl:
    """:class:`NetworkControl` backed by pyroute2 netlink sockets."""

    @contextmanager
    def _session(self, pid: Optional[int]) -> Iterator[Any]:
        if pid is None:
            with IPRoute() as ipr:
                yield ipr
        else:
            with NetNS(f"/proc/{pid}/ns/net", flags=0) as ns:
                yield ns

    def _index(self, session: Any, ifname: str) -> int:
        indexes = session.link_lookup(ifname=ifname)
        if not indexes:
            raise _no_device(ifname)
        return indexes[0]

    def link_exists(self, ifname: str, *, pid: Optional[int] = None) -> bool:
        with self._session(pid) as session:
            return bool(session.link_lookup(ifname=ifname))

    def link_info(self, ifname: str, *, pid: Optional[int] = None) -> LinkInfo:
        with self._session(pid) as session:
            index = self._index(session, ifname)
            (link,) = session.get_links(index)
            return LinkInfo(
                name=link.get_attr("IFLA_IFNAME"),
                address=link.get_attr("IFLA_ADDRESS"),
                mtu=int(link.get_attr("IFLA_MTU")),
                up=bool(link["flags"] & IFF_UP),
                master=link.get_attr("IFLA_MASTER"),
            )

    def create_link(self, ifname: str, kind: str, *, mtu: Optional[int] = None) -> None:
        attributes: dict[str, Any] = {"ifname": ifname, "kind": kind}
        if mtu is not None:
            attributes["mtu"] = mtu
        with IPRoute() as ipr:
            ipr.link("add", **attributes)

    def create_veth(self, ifname: str, peer: str, *, mtu: int) -> None:
        with IPRoute() as ipr:
            ipr.link("add", ifname=ifname, kind="veth", mtu=mtu, peer={"ifname": peer, "mtu": mtu})

    def delete_link(self, ifname: str, *, pid: Optional[int] = None) -> None:
        with self._session(pid) as session:
            indexes = session.link_lookup(ifname=ifname)
            if not indexes:
                return
            session.link("del", index=indexes[0])

    def set_link(self, ifname: str, /, *, pid: Optional[int] = None, **attributes: Any) -> None:
        with self._session(pid) as session:
            index = self._index(session, ifname)
            master = attributes.pop("master", None)
            if master is not None:
                attributes["master"] = self._index(session, master)
            session.link("set", index=index, **attributes)

    def move_to_namespace(self, ifname: str, pid: int) -> None:
        with IPRoute() as ipr:
            index = self._index(ipr, ifname)
            ipr.link("set", index=index, net_ns_pid=pid)

    def add_address(self, ifname: str, cidr: str, *, pid: Optional[int] = None) -> bool:
        interface = ipaddress.ip_interface(cidr)
        with self._session(pid) as session:
            index = self._index(session, ifname)
            try:
                session.addr(
                    "add",
                    index=index,
                    address=str(interface.ip),
                    mask=interface.network.prefixlen,
                )
            except NetlinkError as exc:
                if exc.code == errno.EEXIST:
                    return False
                raise
        return True

    def replace_route(self, destination: str, ifname: str, *, pid: Optional[int] = None) -> None:
        network = ipaddress.ip_network(destination, strict=False)
        with self._session(pid) as session:
            index = self._index(session, ifname)
            session.route(
                "replace",
                dst=str(network.network_address),
                dst_len=network.prefixlen,
                oif=index,
                scope=RT_SCOPE_LINK,
            )
