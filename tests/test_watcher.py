from __future__ import annotations

import errno

import pytest
from pyroute2 import NetlinkError

from tests.utils.fakes import FakeContainer, FakeEventStream
from weavenet.common.errors import WatcherEventFailure
from weavenet.common.schemas import ContainerEvent
from weavenet.router.watcher import LifecycleWatcher


def _start(container_id: str) -> dict:
    return {"status": "start", "id": container_id, "time": 1700000000}


def _container(docker_client, control, container_id: str, pid: int, ip_address: str = "172.17.0.2"):
    control.create_link("ethwe", "veth")
    control.move_to_namespace("ethwe", pid)
    return docker_client.containers.add(FakeContainer(container_id, container_id, "app", pid=pid, ip_address=ip_address))


@pytest.fixture
def watcher(docker_client, control, runner):
    return LifecycleWatcher(docker_client, control, "ethwe", "10.2.0.0/16", runner=runner)


def test_run_subscribes_to_container_starts(watcher, docker_client):
    watcher.run()

    assert docker_client.event_filters == {"type": "container", "event": "start"}


def test_started_container_gets_offload_and_route(watcher, docker_client, control, runner):
    _container(docker_client, control, "c1", 4242)
    docker_client.event_payloads = [_start("c1")]

    watcher.run()

    assert watcher.processed == 1
    assert ["nsenter", "--net=/proc/4242/ns/net", "ethtool", "-K", "ethwe", "tx", "off"] in runner.calls
    assert control.routes[(4242, "10.2.0.0/16")] == "ethwe"


def test_failure_on_one_event_does_not_block_the_next(watcher, docker_client, control):
    _container(docker_client, control, "c2", 4343)
    docker_client.event_payloads = [_start("gone"), _start("c2")]

    watcher.run()

    assert watcher.failed == 1
    assert watcher.processed == 1
    assert control.routes[(4343, "10.2.0.0/16")] == "ethwe"


def test_events_are_handled_in_arrival_order(watcher, docker_client, control, runner):
    _container(docker_client, control, "c1", 4242)
    _container(docker_client, control, "c2", 4343)
    docker_client.event_payloads = [_start("c2"), _start("c1")]

    watcher.run()

    touched = [call[1] for call in runner.calls]
    assert touched == ["--net=/proc/4343/ns/net", "--net=/proc/4242/ns/net"]


def test_non_start_events_are_ignored(watcher, docker_client, control, runner):
    _container(docker_client, control, "c1", 4242)

    assert watcher.process_event(ContainerEvent(container_id="c1", action="die")) is False
    assert runner.calls == []


def test_container_without_address_is_skipped(watcher, docker_client, control, runner):
    _container(docker_client, control, "c1", 4242, ip_address="")
    docker_client.event_payloads = [_start("c1")]

    watcher.run()

    assert watcher.processed == 0
    assert watcher.failed == 0
    assert runner.calls == []


def test_route_failure_is_reported_per_container(watcher, docker_client, control):
    _container(docker_client, control, "c1", 4242)
    control.failures["replace_route"] = NetlinkError(errno.ENETUNREACH, "Network is unreachable")

    with pytest.raises(WatcherEventFailure) as excinfo:
        watcher.process_event(ContainerEvent(container_id="c1", action="start"))

    assert excinfo.value.container_id == "c1"


def test_unexpected_error_is_counted_and_logged(docker_client, control):
    def exploding(args):
        raise RuntimeError("boom")

    watcher = LifecycleWatcher(docker_client, control, "ethwe", runner=exploding)
    _container(docker_client, control, "c1", 4242)
    _container(docker_client, control, "c2", 4343)
    docker_client.event_payloads = [_start("c1"), _start("c2")]

    watcher.run()

    assert watcher.failed == 2


def test_stop_closes_the_stream(watcher, docker_client, control):
    _container(docker_client, control, "c1", 4242)
    _container(docker_client, control, "c2", 4343)
    stream = FakeEventStream([_start("c1"), _start("c2")])
    handle = watcher.handle

    def handle_then_stop(payload):
        handle(payload)
        watcher.stop()

    watcher.handle = handle_then_stop
    watcher.run(stream)

    assert stream.closed is True
    assert watcher.processed == 1


class _BrokenStream(FakeEventStream):
    def __iter__(self):
        raise ConnectionError("daemon went away")
        yield  # pragma: no cover


def test_stream_errors_propagate_unless_stopped(watcher):
    stream = _BrokenStream([])

    with pytest.raises(ConnectionError):
        watcher.run(stream)
    assert stream.closed is True

    watcher.stop()
    watcher.run(_BrokenStream([]))


def test_malformed_event_does_not_end_the_loop(watcher, docker_client, control):
    _container(docker_client, control, "c1", 4242)
    docker_client.event_payloads = [
        {"status": "start", "id": "bad", "time": "not-a-number"},
        _start("c1"),
    ]

    watcher.run()

    assert watcher.failed == 1
    assert watcher.processed == 1
    assert control.routes[(4242, "10.2.0.0/16")] == "ethwe"
