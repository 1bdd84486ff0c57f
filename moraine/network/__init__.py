from moraine.network.firewall import (
    AddressRule,
    RuleChanges,
    RuleSynthesizer,
    parse_addresses,
    reconcile,
    rule_id_for,
)

__all__ = [
    "AddressRule",
    "RuleChanges",
    "RuleSynthesizer",
    "parse_addresses",
    "reconcile",
    "rule_id_for",
]
