"""Kernel networking control for the weave bridge and container links."""

from .attach import VethPair, attach, veth_names
from .bridge import BridgeInfo, ensure_bridge, expose
from .control import LinkInfo, NetlinkControl, NetworkControl
from .firewall import FirewallInstaller, FirewallRule, RuleResult

__all__ = [
    "BridgeInfo",
    "FirewallInstaller",
    "FirewallRule",
    "LinkInfo",
    "NetlinkControl",
    "NetworkControl",
    "RuleResult",
    "VethPair",
    "attach",
    "ensure_bridge",
    "expose",
    "veth_names",
]
