"""Alert rule catalogue: rule types, lead times and the settings flag that enables each."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

from models.alert import AlertSettings

OCCASION_DAILY = "daily"
OCCASION_MONTHLY = "monthly"
OCCASIONS = (OCCASION_DAILY, OCCASION_MONTHLY)


class AlertRuleType(str, Enum):
    DAYS_14 = "DAYS_14"
    DAYS_7 = "DAYS_7"
    DAYS_3 = "DAYS_3"
    TOMORROW = "TOMORROW"
    OVERDUE = "OVERDUE"
    MONTHLY_SUMMARY = "MONTHLY_SUMMARY"
    DATA_QUALITY = "DATA_QUALITY"


@dataclass(frozen=True)
class RuleDefinition:
    rule_type: AlertRuleType
    settings_flag: str
    label: str
    occasion: str
    lead_days: Optional[int] = None

    @property
    def is_renewal_lead(self) -> bool:
        return self.lead_days is not None

    def enabled(self, settings: AlertSettings) -> bool:
        return bool(getattr(settings, self.settings_flag, False))


# Order matters: candidates are produced and dispatched in this order.
RULES: Tuple[RuleDefinition, ...] = (
    RuleDefinition(AlertRuleType.DAYS_14, "enable_14_days", "14 days", OCCASION_DAILY, lead_days=14),
    RuleDefinition(AlertRuleType.DAYS_7, "enable_7_days", "7 days", OCCASION_DAILY, lead_days=7),
    RuleDefinition(AlertRuleType.DAYS_3, "enable_3_days", "3 days", OCCASION_DAILY, lead_days=3),
    RuleDefinition(AlertRuleType.TOMORROW, "enable_tomorrow", "tomorrow", OCCASION_DAILY, lead_days=1),
    RuleDefinition(AlertRuleType.OVERDUE, "enable_overdue", "OVERDUE", OCCASION_DAILY),
    RuleDefinition(AlertRuleType.DATA_QUALITY, "enable_data_quality", "data quality", OCCASION_DAILY),
    RuleDefinition(AlertRuleType.MONTHLY_SUMMARY, "enable_monthly_summary", "monthly summary", OCCASION_MONTHLY),
)

_BY_TYPE = {rule.rule_type: rule for rule in RULES}


def rule_definition(rule_type: AlertRuleType) -> RuleDefinition:
    return _BY_TYPE[AlertRuleType(rule_type)]


def renewal_lead_rules() -> Tuple[RuleDefinition, ...]:
    return tuple(rule for rule in RULES if rule.is_renewal_lead)


def rule_label(rule_type: AlertRuleType) -> str:
    return rule_definition(rule_type).label


def rules_for_occasion(occasion: str) -> Tuple[RuleDefinition, ...]:
    return tuple(rule for rule in RULES if rule.occasion == occasion)


__all__ = [
    "AlertRuleType",
    "OCCASIONS",
    "OCCASION_DAILY",
    "OCCASION_MONTHLY",
    "RULES",
    "RuleDefinition",
    "renewal_lead_rules",
    "rule_definition",
    "rule_label",
    "rules_for_occasion",
]
