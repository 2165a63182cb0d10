"""Helper daemon reacting to container start events."""

from __future__ import annotations

from typing import Any, Iterator, Optional, Protocol

import docker
import structlog
from docker.errors import NotFound
from opentelemetry import trace
from pyroute2 import NetlinkError

from ..common.errors import ResourceCreationFailure, WatcherEventFailure
from ..common.schemas import ContainerEvent, ContainerInspection
from ..network.commands import CommandRunner, disable_offload, run_command
from ..network.control import NetworkControl

LOGGER = structlog.get_logger("weavenet.router.watcher")
TRACER = trace.get_tracer("weavenet.router.watcher")


class EventStream(Protocol):
    """Blocking iterator over decoded event payloads that can be closed from elsewhere."""

    def __iter__(self) -> Iterator[dict[str, Any]]:
        ...

    def close(self) -> None:
        ...


class LifecycleWatcher:
    """Fix up the network of every container that starts.

    Events are handled one at a time in arrival order. A failure while
    handling one container is logged and the loop moves on to the next event.
    """

    def __init__(
        self,
        client: docker.DockerClient,
        control: NetworkControl,
        container_ifname: str,
        route: Optional[str] = None,
        *,
        runner: CommandRunner = run_command,
    ) -> None:
        self._client = client
        self._control = control
        self._ifname = container_ifname
        self._route = route
        self._runner = runner
        self._stream: Optional[EventStream] = None
        self._stopped = False
        self.processed = 0
        self.failed = 0

    def open_stream(self) -> EventStream:
        return self._client.events(decode=True, filters={"type": "container", "event": "start"})

    def run(self, stream: Optional[EventStream] = None) -> None:
        """Consume events until the stream ends or :meth:`stop` is called."""

        self._stream = stream or self.open_stream()
        LOGGER.info("Watching container events", ifname=self._ifname, route=self._route)
        try:
            for payload in self._stream:
                if self._stopped:
                    break
                self.handle(payload)
        except Exception:
            if not self._stopped:
                raise
        finally:
            self._stream.close()
        LOGGER.info("Container event stream closed", processed=self.processed, failed=self.failed)

    def stop(self) -> None:
        self._stopped = True
        if self._stream is not None:
            self._stream.close()

    def handle(self, payload: dict[str, Any]) -> None:
        try:
            event = ContainerEvent.from_payload(payload)
        except (AttributeError, TypeError, ValueError, OverflowError) as exc:
            self.failed += 1
            LOGGER.warning("Discarding malformed container event", payload=payload, error=str(exc))
            return
        try:
            if self.process_event(event):
                self.processed += 1
        except WatcherEventFailure as exc:
            self.failed += 1
            LOGGER.warning("Failed to process container event", container=exc.container_id, error=str(exc))
        except Exception:  # noqa: BLE001 - one container must not stop the loop
            self.failed += 1
            LOGGER.exception("Unexpected error processing container event", container=event.container_id)

    def process_event(self, event: ContainerEvent) -> bool:
        """Apply the fixups for one event; returns ``True`` if the container was touched."""

        if not event.is_start:
            return False
        with TRACER.start_as_current_span("watcher.container_start") as span:
            span.set_attribute("weave.container", event.container_id)
            try:
                container = self._client.containers.get(event.container_id)
            except NotFound as exc:
                raise WatcherEventFailure(
                    f"Container {event.container_id} disappeared before it could be inspected",
                    container_id=event.container_id,
                ) from exc
            inspection = ContainerInspection.from_attrs(container.attrs)
            if not inspection.ip_address:
                LOGGER.debug("Skipping container without an address", container=event.container_id)
                return False
            if not inspection.pid:
                LOGGER.debug("Skipping container that is no longer running", container=event.container_id)
                return False

            try:
                disable_offload(self._ifname, pid=inspection.pid, runner=self._runner)
                if self._route:
                    self._control.replace_route(self._route, self._ifname, pid=inspection.pid)
            except (NetlinkError, ResourceCreationFailure, OSError) as exc:
                raise WatcherEventFailure(
                    f"Failed to configure {self._ifname} in container {event.container_id}: {exc}",
                    container_id=event.container_id,
                ) from exc

        LOGGER.info(
            "Configured started container",
            container=event.container_id,
            ip=inspection.ip_address,
            ifname=self._ifname,
        )
        return True
