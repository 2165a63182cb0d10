"""Command-line entrypoint: ``weave <command>``."""

from __future__ import annotations

import argparse
import asyncio
import ipaddress
import signal
import sys
from typing import Callable, Optional, Sequence

import docker
import structlog
from docker.errors import DockerException, NotFound
from pydantic import ValidationError

from ..common.errors import PrecheckFailure, RuntimeInconsistency, WeaveError
from ..common.observability import configure_logging, configure_tracing, flush_tracing
from ..common.schemas import ContainerInspection
from ..common.settings import MAX_IFNAME_LENGTH, WeaveSettings
from ..network.attach import attach
from ..network.bridge import MULTICAST_ROUTE, BridgeInfo, ensure_bridge, expose
from ..network.commands import (
    NAMESPACE_TOOL,
    OFFLOAD_TOOL,
    require_privileges,
    require_tools,
    warn_missing_tools,
)
from ..network.control import NetlinkControl, NetworkControl
from ..network.firewall import FirewallInstaller
from ..router.info import fetch_status, image_version
from ..router.launcher import RouterLauncher
from ..router.watcher import LifecycleWatcher

LOGGER = structlog.get_logger("weavenet.cli")


def _cidr(value: str) -> str:
    try:
        ipaddress.ip_interface(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid CIDR address: {value}") from exc
    return value


def _network(value: str) -> str:
    try:
        ipaddress.ip_network(value, strict=False)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid route: {value}") from exc
    return value


def _ifname(value: str) -> str:
    if not value or len(value) > MAX_IFNAME_LENGTH or "/" in value or " " in value:
        raise argparse.ArgumentTypeError(f"invalid interface name: {value}")
    return value


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="weave", description="Manage the weave overlay network on this host")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("setup", help="Create the weave bridge and firewall rules")

    launch_parser = subparsers.add_parser("launch", help="Start the weave router container")
    launch_parser.add_argument("peers", nargs="*", help="Addresses of peers to connect to")

    helper_parser = subparsers.add_parser("helper", help="Fix up the network of containers as they start")
    helper_parser.add_argument("ifname", type=_ifname, help="Interface inside each container")
    helper_parser.add_argument("route", type=_network, help="Route to install via that interface")

    subparsers.add_parser("status", help="Show the router's status")
    subparsers.add_parser("version", help="Show the router image version")
    subparsers.add_parser("stop", help="Stop the weave router container")

    attach_parser = subparsers.add_parser("attach", help="Attach a running container to the bridge")
    attach_parser.add_argument("cidr", type=_cidr, help="Address for the container interface")
    attach_parser.add_argument("container", help="Container name or id")

    expose_parser = subparsers.add_parser("expose", help="Give the host an address on the bridge")
    expose_parser.add_argument("cidr", type=_cidr, help="Address to assign to the bridge")
    expose_parser.add_argument(
        "--route",
        dest="routes",
        action="append",
        type=_network,
        default=[],
        help="Route this destination via the bridge (repeatable)",
    )
    expose_parser.add_argument(
        "--multicast", action="store_true", help=f"Also route {MULTICAST_ROUTE} via the bridge"
    )
    return parser


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    return build_parser().parse_args(argv)


def network_control() -> NetworkControl:
    return NetlinkControl()


def docker_client(settings: WeaveSettings) -> docker.DockerClient:
    return docker.DockerClient(base_url=settings.docker_base_url)


def precheck(settings: WeaveSettings, *, firewall: bool = False) -> None:
    require_privileges()
    if firewall:
        require_tools([settings.iptables_path])
    warn_missing_tools([OFFLOAD_TOOL, NAMESPACE_TOOL])


def _setup_bridge(settings: WeaveSettings, control: NetworkControl) -> BridgeInfo:
    return ensure_bridge(control, settings.bridge_name, settings.mtu, container_ifname=settings.container_ifname)


def cmd_setup(args: argparse.Namespace, settings: WeaveSettings) -> int:
    precheck(settings, firewall=True)
    _setup_bridge(settings, network_control())
    FirewallInstaller(settings.iptables_path).install_bridge_rules(settings.bridge_name, settings.nat_chain)
    return 0


def cmd_launch(args: argparse.Namespace, settings: WeaveSettings) -> int:
    precheck(settings, firewall=True)
    launcher = RouterLauncher(settings, docker_client(settings), network_control())
    print(launcher.launch(args.peers))
    return 0


def cmd_helper(args: argparse.Namespace, settings: WeaveSettings) -> int:
    precheck(settings)
    watcher = LifecycleWatcher(docker_client(settings), network_control(), args.ifname, args.route)

    def _shutdown(signum, frame):  # pragma: no cover - signal handler
        LOGGER.info("Received signal, stopping helper", signal=signum)
        watcher.stop()

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)
    watcher.run()
    return 0


def cmd_status(args: argparse.Namespace, settings: WeaveSettings) -> int:
    print(asyncio.run(fetch_status(settings.status_url, settings.status_timeout_seconds)))
    return 0


def cmd_version(args: argparse.Namespace, settings: WeaveSettings) -> int:
    print(f"weave router {image_version(docker_client(settings), settings.router_image)}")
    return 0


def cmd_stop(args: argparse.Namespace, settings: WeaveSettings) -> int:
    launcher = RouterLauncher(settings, docker_client(settings), network_control())
    launcher.stop()
    return 0


def cmd_attach(args: argparse.Namespace, settings: WeaveSettings) -> int:
    precheck(settings)
    client = docker_client(settings)
    try:
        container = client.containers.get(args.container)
    except NotFound as exc:
        raise PrecheckFailure(f"Container {args.container} not found") from exc
    inspection = ContainerInspection.from_attrs(container.attrs)
    if not inspection.pid:
        raise RuntimeInconsistency(f"Container {args.container} is not running")
    control = network_control()
    bridge = _setup_bridge(settings, control)
    host_ifname = attach(
        control,
        settings.bridge_name,
        inspection.pid,
        settings.container_ifname,
        bridge.mtu,
        cidr=args.cidr,
    )
    print(host_ifname)
    return 0


def cmd_expose(args: argparse.Namespace, settings: WeaveSettings) -> int:
    precheck(settings)
    control = network_control()
    _setup_bridge(settings, control)
    routes = list(args.routes)
    if args.multicast:
        routes.append(MULTICAST_ROUTE)
    expose(control, settings.bridge_name, args.cidr, routes=routes)
    return 0


COMMANDS: dict[str, Callable[[argparse.Namespace, WeaveSettings], int]] = {
    "setup": cmd_setup,
    "launch": cmd_launch,
    "helper": cmd_helper,
    "status": cmd_status,
    "version": cmd_version,
    "stop": cmd_stop,
    "attach": cmd_attach,
    "expose": cmd_expose,
}


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    try:
        settings = WeaveSettings()
    except ValidationError as exc:
        print(f"Invalid configuration: {exc}", file=sys.stderr)
        return 1
    configure_logging("weavenet", settings.log_level, command=args.command)
    configure_tracing(
        service_name="weavenet",
        endpoint=settings.otel_exporter_endpoint,
        headers=settings.otel_exporter_headers,
        sampler_ratio=settings.otel_sampler_ratio,
        command=args.command,
    )
    try:
        return COMMANDS[args.command](args, settings)
    except PrecheckFailure as exc:
        print(str(exc), file=sys.stderr)
        build_parser().print_usage(sys.stderr)
        return 1
    except WeaveError as exc:
        print(str(exc), file=sys.stderr)
        return 1
    except DockerException as exc:
        print(f"Container runtime error: {exc}", file=sys.stderr)
        return 1
    finally:
        flush_tracing()


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
