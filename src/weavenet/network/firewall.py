"""Idempotent iptables rule installation."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Sequence

import structlog

from ..common.errors import ResourceCreationFailure
from .commands import CommandRunner, run_command

LOGGER = structlog.get_logger("weavenet.network.firewall")


class RuleResult(str, Enum):
    CREATED = "created"
    ALREADY_PRESENT = "already_present"


@dataclass(frozen=True)
class FirewallRule:
    table: str
    chain: str
    spec: tuple[str, ...]
    insert: bool = False

    def command(self, action: str) -> list[str]:
        return ["-t", self.table, action, self.chain, *self.spec]

    def __str__(self) -> str:
        return " ".join(["-t", self.table, self.chain, *self.spec])


def forward_rule(bridge: str) -> FirewallRule:
    """Accept traffic forwarded from the bridge back onto itself."""

    return FirewallRule("filter", "FORWARD", ("-i", bridge, "-o", bridge, "-j", "ACCEPT"), insert=True)


def nat_jump_rule(chain: str) -> FirewallRule:
    return FirewallRule("nat", "POSTROUTING", ("-j", chain))


class FirewallInstaller:
    """Ensures rules exist, checking with ``-C`` before appending or inserting."""

    def __init__(self, binary: str = "iptables", runner: CommandRunner = run_command) -> None:
        self._binary = binary
        self._runner = runner

    def _argv(self, args: Sequence[str]) -> list[str]:
        # -w waits for the xtables lock instead of failing when another writer holds it.
        return [self._binary, "-w", *args]

    def exists(self, rule: FirewallRule) -> bool:
        return self._runner(self._argv(rule.command("-C"))).ok

    def ensure(self, rule: FirewallRule) -> RuleResult:
        if self.exists(rule):
            LOGGER.debug("Firewall rule already present", rule=str(rule))
            return RuleResult.ALREADY_PRESENT
        result = self._runner(self._argv(rule.command("-I" if rule.insert else "-A")))
        if not result.ok:
            raise ResourceCreationFailure(f"Failed to install firewall rule {rule}: {result.message}")
        LOGGER.info("Installed firewall rule", rule=str(rule))
        return RuleResult.CREATED

    def ensure_chain(self, table: str, chain: str) -> RuleResult:
        result = self._runner(self._argv(["-t", table, "-N", chain]))
        if result.ok:
            LOGGER.info("Created firewall chain", table=table, chain=chain)
            return RuleResult.CREATED
        # iptables has no non-mutating chain check; -N failing means it exists.
        LOGGER.debug("Firewall chain not created", table=table, chain=chain, error=result.message)
        return RuleResult.ALREADY_PRESENT

    def install_bridge_rules(self, bridge: str, nat_chain: str) -> dict[str, RuleResult]:
        results = {
            "forward": self.ensure(forward_rule(bridge)),
            "nat_chain": self.ensure_chain("nat", nat_chain),
            "nat_jump": self.ensure(nat_jump_rule(nat_chain)),
        }
        return results
