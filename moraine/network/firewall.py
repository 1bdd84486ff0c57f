"""
Firewall rules derived from addresses assigned at deploy time.

The function app's outbound IP addresses are chosen by the platform, so
the SQL server firewall rules that let the app reach the database can only
be declared once the app exists.

Rule identifiers are derived from the address alone:

    rule_id_for("1.2.3.4")   -> "outbound-1-2-3-4"
    rule_id_for("2001:db8::1") -> "outbound-2001-0db8-0000-0000-0000-0000-0000-0001"

so re-running with the same addresses re-declares the same rules, and an
address that disappears only retires its own rule.
"""

import ipaddress
from dataclasses import dataclass
from typing import Any, Callable, Iterable

import structlog
from pydantic import BaseModel

from moraine.core.deferred import DeferredValue

logger = structlog.get_logger()

DEFAULT_RULE_PREFIX = "outbound"


class AddressRule(BaseModel):
    """Allow traffic from exactly one address to a scope (e.g. a SQL server)."""

    rule_id: str
    scope: str
    start_address: str
    end_address: str

    class Config:
        frozen = True


@dataclass(frozen=True)
class RuleChanges:
    """Rule ids to create, keep and retire when moving to a new rule set."""

    create: tuple[str, ...] = ()
    keep: tuple[str, ...] = ()
    retire: tuple[str, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.create and not self.retire


def parse_addresses(raw: str | None, delimiter: str = ",") -> list[str]:
    """
    Split a delimited address list.

    Empty and malformed entries are dropped; duplicates keep their first
    position. Addresses are returned in canonical form.
    """
    if not raw:
        return []

    addresses: list[str] = []
    for entry in raw.split(delimiter):
        entry = entry.strip()
        if not entry:
            continue
        try:
            address = str(ipaddress.ip_address(entry))
        except ValueError:
            logger.debug("address_dropped", entry=entry)
            continue
        if address not in addresses:
            addresses.append(address)

    return addresses


def rule_id_for(address: str, prefix: str = DEFAULT_RULE_PREFIX) -> str:
    """Deterministic rule identifier for one address."""
    exploded = ipaddress.ip_address(address).exploded
    return f"{prefix}-{exploded.replace('.', '-').replace(':', '-')}"


def reconcile(previous_ids: Iterable[str], rules: Iterable[AddressRule]) -> RuleChanges:
    """
    Compare the rule ids of a previous run with a new rule set.

    Example:
        changes = reconcile(["outbound-1-2-3-4"], synthesizer.rules_for("5.6.7.8", "sql"))
        changes.retire  # ("outbound-1-2-3-4",)
    """
    previous = list(dict.fromkeys(previous_ids))
    current = [rule.rule_id for rule in rules]

    return RuleChanges(
        create=tuple(rule_id for rule_id in current if rule_id not in previous),
        keep=tuple(rule_id for rule_id in current if rule_id in previous),
        retire=tuple(rule_id for rule_id in previous if rule_id not in current),
    )


RuleDeclarer = Callable[[str, list[AddressRule]], Any]


class RuleSynthesizer:
    """
    Expands a deferred address list into one rule per address.

    Example:
        synthesizer = RuleSynthesizer()
        rules = synthesizer.synthesize(
            function_app.outbound_addresses,
            scope=database.server_name,
            declare=provider.firewall_rules,
        )
    """

    def __init__(self, prefix: str = DEFAULT_RULE_PREFIX, delimiter: str = ","):
        self.prefix = prefix
        self.delimiter = delimiter

    def rules_for(self, raw: str | None, scope: str) -> list[AddressRule]:
        """Build the rules for a resolved address list."""
        return [
            AddressRule(
                rule_id=rule_id_for(address, self.prefix),
                scope=scope,
                start_address=address,
                end_address=address,
            )
            for address in parse_addresses(raw, self.delimiter)
        ]

    def synthesize(
        self,
        addresses: DeferredValue[str] | str,
        scope: DeferredValue[str] | str,
        declare: RuleDeclarer | None = None,
    ) -> DeferredValue[list[AddressRule]]:
        """
        Build the rules once both the address list and the scope resolve.

        Args:
            addresses: Delimited address list
            scope: Reference of the resource the rules protect
            declare: Called once with (scope, rules) to declare them

        Returns:
            DeferredValue of the synthesized rules
        """

        def build(values: tuple) -> list[AddressRule]:
            raw, resolved_scope = values
            rules = self.rules_for(raw, resolved_scope)
            logger.info(
                "firewall_rules_synthesized",
                scope=resolved_scope,
                rules=[rule.rule_id for rule in rules],
            )
            if declare is not None:
                declare(resolved_scope, rules)
            return rules

        return DeferredValue.all(addresses, scope, label="firewall-rules").map(build)
