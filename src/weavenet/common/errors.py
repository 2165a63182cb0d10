"""Failure taxonomy for weave network operations."""

from __future__ import annotations


class WeaveError(RuntimeError):
    """Base class for failures surfaced to the operator."""


class PrecheckFailure(WeaveError):
    """Missing privilege, required tool, or malformed arguments. Nothing was mutated."""


class StateConflict(WeaveError):
    """The router container name is occupied by this or another image."""


class ResourceCreationFailure(WeaveError):
    """A device, veth pair, address, or firewall rule could not be created."""


class RuntimeInconsistency(WeaveError):
    """The container runtime reported a pid that cannot be used."""


class WatcherEventFailure(WeaveError):
    """Processing of a single lifecycle event failed."""

    def __init__(self, message: str, *, container_id: str) -> None:
        super().__init__(message)
        self.container_id = container_id
