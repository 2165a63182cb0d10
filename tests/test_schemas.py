from __future__ import annotations

from datetime import UTC, datetime

from weavenet.common.schemas import ContainerEvent, ContainerInspection


def test_inspection_reads_pid_and_address():
    attrs = {
        "Id": "abc123",
        "Name": "/weave",
        "Config": {"Image": "zettio/weave"},
        "State": {"Running": True, "Pid": 4242},
        "NetworkSettings": {"IPAddress": "172.17.0.5"},
    }

    inspection = ContainerInspection.from_attrs(attrs)

    assert inspection.id == "abc123"
    assert inspection.name == "weave"
    assert inspection.image == "zettio/weave"
    assert inspection.running is True
    assert inspection.pid == 4242
    assert inspection.ip_address == "172.17.0.5"


def test_inspection_falls_back_to_named_networks():
    attrs = {
        "Id": "abc123",
        "State": {"Running": True, "Pid": 1},
        "NetworkSettings": {"IPAddress": "", "Networks": {"bridge": {"IPAddress": "10.0.0.9"}}},
    }

    assert ContainerInspection.from_attrs(attrs).ip_address == "10.0.0.9"


def test_inspection_without_state():
    inspection = ContainerInspection.from_attrs({"Id": "abc123"})

    assert inspection.pid is None
    assert inspection.running is False
    assert inspection.ip_address is None


def test_event_from_legacy_payload():
    event = ContainerEvent.from_payload({"status": "start", "id": "abc", "time": 1700000000})

    assert event.is_start
    assert event.container_id == "abc"
    assert event.time == datetime.fromtimestamp(1700000000, UTC)


def test_event_from_current_payload():
    event = ContainerEvent.from_payload({"Type": "container", "Action": "die", "Actor": {"ID": "abc"}})

    assert event.container_id == "abc"
    assert not event.is_start
