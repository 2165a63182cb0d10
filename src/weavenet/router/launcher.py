"""Launching and stopping the weave router container."""

from __future__ import annotations

from enum import Enum
from typing import Optional, Sequence

import docker
import structlog
from docker.errors import NotFound
from docker.models.containers import Container
from opentelemetry import trace
from pyroute2 import NetlinkError

from ..common.errors import ResourceCreationFailure, RuntimeInconsistency, StateConflict
from ..common.schemas import ContainerInspection
from ..common.settings import WeaveSettings
from ..network.attach import attach
from ..network.bridge import ensure_bridge
from ..network.commands import CommandRunner, run_command
from ..network.control import NetworkControl
from ..network.firewall import FirewallInstaller

LOGGER = structlog.get_logger("weavenet.router.launcher")
TRACER = trace.get_tracer("weavenet.router.launcher")


class RouterState(str, Enum):
    ABSENT = "absent"
    RUNNING_THIS_IMAGE = "running-this-image"
    STOPPED_THIS_IMAGE = "stopped-this-image"
    OCCUPIED_BY_OTHER = "occupied-by-other"


def normalize_image(reference: str) -> str:
    """Append the implicit ``latest`` tag so ``repo`` and ``repo:latest`` compare equal."""

    if "@" in reference:
        return reference
    last_segment = reference.rsplit("/", 1)[-1]
    if ":" in last_segment:
        return reference
    return f"{reference}:latest"


def classify(inspection: Optional[ContainerInspection], image: str) -> RouterState:
    if inspection is None:
        return RouterState.ABSENT
    if normalize_image(inspection.image) != normalize_image(image):
        return RouterState.OCCUPIED_BY_OTHER
    if inspection.running:
        return RouterState.RUNNING_THIS_IMAGE
    return RouterState.STOPPED_THIS_IMAGE


class RouterLauncher:
    """Starts the singleton router container and connects it to the bridge."""

    def __init__(
        self,
        settings: WeaveSettings,
        client: docker.DockerClient,
        control: NetworkControl,
        *,
        firewall: Optional[FirewallInstaller] = None,
        runner: CommandRunner = run_command,
    ) -> None:
        self._settings = settings
        self._client = client
        self._control = control
        self._runner = runner
        self._firewall = firewall or FirewallInstaller(settings.iptables_path, runner=runner)

    def _lookup(self) -> Optional[Container]:
        try:
            return self._client.containers.get(self._settings.router_container_name)
        except NotFound:
            return None

    def state(self) -> tuple[RouterState, Optional[ContainerInspection]]:
        container = self._lookup()
        inspection = ContainerInspection.from_attrs(container.attrs) if container else None
        return classify(inspection, self._settings.router_image), inspection

    def launch(self, peers: Sequence[str] = ()) -> str:
        """Start the router and return its container id."""

        settings = self._settings
        name = settings.router_container_name
        with TRACER.start_as_current_span("router.launch") as span:
            state, current = self.state()
            span.set_attribute("weave.router.state", state.value)
            if current is not None:
                if state is RouterState.RUNNING_THIS_IMAGE:
                    raise StateConflict("Weave is already running.")
                if state is RouterState.OCCUPIED_BY_OTHER:
                    status = "running" if current.running else "stopped"
                    raise StateConflict(
                        f"Found another {status} container named '{name}' (image {current.image}). "
                        "Aborting."
                    )
                LOGGER.info("Removing stopped router container", container=current.id)
                self._client.api.remove_container(current.id)

            bridge = ensure_bridge(
                self._control,
                settings.bridge_name,
                settings.mtu,
                container_ifname=settings.container_ifname,
                runner=self._runner,
            )
            self._firewall.install_bridge_rules(settings.bridge_name, settings.nat_chain)
            identity = bridge.address
            # Random on bridge creation and not persisted elsewhere: a recreated
            # bridge gives the router a new identity.
            LOGGER.info(
                "Router identity taken from bridge address",
                router_identity=identity,
                bridge_created=bridge.created,
            )
            if settings.router_network_mode == "host":
                self._remove_stale_interface()

            container = self._start_container(identity, peers)
            span.set_attribute("weave.router.container", container.id)
            pid = self._resolve_pid(container.id)
            attach(
                self._control,
                settings.bridge_name,
                pid,
                settings.container_ifname,
                bridge.mtu,
                runner=self._runner,
            )
        LOGGER.info("Router launched", container=container.id, pid=pid, peers=list(peers))
        return container.id

    def _start_container(self, identity: str, peers: Sequence[str]) -> Container:
        settings = self._settings
        command = ["-iface", settings.container_ifname, "-name", identity, *peers]
        environment = {}
        if settings.password:
            environment["WEAVE_PASSWORD"] = settings.password
        LOGGER.debug(
            "Starting router container",
            image=settings.router_image,
            network_mode=settings.router_network_mode,
            capabilities=settings.router_capabilities,
        )
        return self._client.containers.run(
            settings.router_image,
            command=command,
            name=settings.router_container_name,
            detach=True,
            network_mode=settings.router_network_mode,
            cap_add=list(settings.router_capabilities),
            environment=environment,
        )

    def _resolve_pid(self, container_id: str) -> int:
        try:
            container = self._client.containers.get(container_id)
        except NotFound as exc:
            raise RuntimeInconsistency(
                f"Container {container_id} is unknown to the container runtime"
            ) from exc
        pid = ContainerInspection.from_attrs(container.attrs).pid
        if pid is None:
            raise RuntimeInconsistency(
                f"Unable to determine pid of container {container_id}: unknown to the container runtime"
            )
        if pid == 0:
            raise RuntimeInconsistency(f"Container {container_id} is not running")
        return pid

    def _remove_stale_interface(self) -> None:
        # With host networking the router's interface lives in the host
        # namespace and outlives the container.
        ifname = self._settings.container_ifname
        try:
            if self._control.link_exists(ifname):
                LOGGER.info("Removing stale router interface", ifname=ifname)
                self._control.delete_link(ifname)
        except NetlinkError as exc:
            raise ResourceCreationFailure(f"Failed to remove stale interface {ifname}: {exc}") from exc

    def stop(self) -> bool:
        container = self._lookup()
        if container is None:
            LOGGER.warning("Weave is not running.")
            return False
        LOGGER.info("Stopping router container", container=container.id)
        container.stop()
        return True
