"""Typed records for data read back from the container runtime."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Optional

from pydantic import BaseModel, Field


class ContainerInspection(BaseModel):
    """Subset of ``docker inspect`` output the network commands rely on."""

    id: str
    name: str = ""
    image: str = ""
    running: bool = False
    pid: Optional[int] = None
    ip_address: Optional[str] = None

    @classmethod
    def from_attrs(cls, attrs: dict[str, Any]) -> "ContainerInspection":
        state = attrs.get("State") or {}
        config = attrs.get("Config") or {}
        pid = state.get("Pid")
        return cls(
            id=str(attrs.get("Id", "")),
            name=str(attrs.get("Name", "")).lstrip("/"),
            image=str(config.get("Image", "")),
            running=bool(state.get("Running", False)),
            pid=int(pid) if pid is not None else None,
            ip_address=_first_ip_address(attrs.get("NetworkSettings") or {}),
        )


def _first_ip_address(settings: dict[str, Any]) -> Optional[str]:
    address = settings.get("IPAddress")
    if address:
        return str(address)
    for network in (settings.get("Networks") or {}).values():
        address = (network or {}).get("IPAddress")
        if address:
            return str(address)
    return None


class ContainerEvent(BaseModel):
    """One entry of the runtime's container lifecycle event stream."""

    container_id: str
    action: str
    time: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "ContainerEvent":
        # Newer daemons report Action/Actor; older ones only status/id.
        action = payload.get("Action") or payload.get("status") or ""
        container_id = payload.get("id") or (payload.get("Actor") or {}).get("ID") or ""
        timestamp = payload.get("time")
        event_time = (
            datetime.fromtimestamp(int(timestamp), UTC) if timestamp is not None else datetime.now(UTC)
        )
        return cls(container_id=str(container_id), action=str(action), time=event_time)

    @property
    def is_start(self) -> bool:
        return self.action == "start"
