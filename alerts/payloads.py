"""Render alert candidates into channel-specific webhook payloads."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, List, Optional

from alerts.evaluator import AlertCandidate
from alerts.rules import AlertRuleType, rule_label
from models.alert import CHANNEL_GOOGLE_CHAT, CHANNEL_SLACK, CHANNEL_WEBHOOK

UNASSIGNED = "Unassigned"
BUTTON_TEXT = "View in SubTrack"
RENEWAL_TITLE = "⏰ Subscription Renewal Reminder"
OVERDUE_TITLE = "⚠️ Subscription OVERDUE"
DATA_QUALITY_TITLE = "📊 Data Quality Alert"
MONTHLY_TITLE = "📅 Monthly Subscription Summary"


@dataclass
class AlertContext:
    rule_type: str
    rule_label: str
    due_date: date
    title: str
    text: str
    url: str
    subscription: Optional[Dict[str, str]] = None
    summary: Dict[str, Any] = field(default_factory=dict)

    @property
    def subtitle(self) -> Optional[str]:
        if not self.subscription:
            return None
        return f"{self.subscription['vendorName']} - {self.subscription['serviceName']}"


def format_amount(amount: Any, currency: Optional[str]) -> str:
    """``99.00`` -> ``"99 USD"``; trailing zeros are dropped."""
    try:
        value = Decimal(str(amount if amount is not None else 0))
    except InvalidOperation:
        value = Decimal(0)
    text = format(value.normalize(), "f")
    return f"{text} {currency}".strip() if currency else text


def format_day(value: Any) -> str:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        value = value.astimezone(timezone.utc).date()
    if not isinstance(value, date):
        return "-"
    return value.strftime("%b %d, %Y")


def _subscription_fields(candidate: AlertCandidate) -> Dict[str, str]:
    subscription = candidate.subscription
    department = getattr(subscription, "department", None)
    owner = getattr(subscription, "owner", None)
    owner_name = owner.full_name if owner is not None else ""
    return {
        "id": str(subscription.id),
        "vendorName": subscription.vendor_name,
        "serviceName": subscription.service_name,
        "renewalDate": format_day(candidate.renewal_date or candidate.due_date),
        "amount": format_amount(subscription.amount, subscription.currency),
        "billingCycle": subscription.billing_cycle or "-",
        "department": (department.name if department is not None and department.name else UNASSIGNED),
        "owner": owner_name or UNASSIGNED,
        "costCenter": subscription.cost_center or UNASSIGNED,
    }


def _subscription_text(title: str, candidate: AlertCandidate, fields: Dict[str, str]) -> str:
    name = f"{fields['vendorName']} - {fields['serviceName']}"
    if candidate.rule_type == AlertRuleType.OVERDUE:
        headline = f"{name} was due on {fields['renewalDate']}."
    else:
        lead = rule_label(candidate.rule_type)
        when = "tomorrow" if lead == "tomorrow" else f"in {lead}"
        headline = f"{name} renews {when} on {fields['renewalDate']}."
    return (
        f"{title}\n{headline}\n"
        f"Amount: {fields['amount']} ({fields['billingCycle']})\n"
        f"Department: {fields['department']} · Owner: {fields['owner']}"
    )


def _data_quality_summary(candidate: AlertCandidate) -> Dict[str, Any]:
    gaps = candidate.gaps
    return {
        "total": len(gaps),
        "missingOwner": sum(1 for item in gaps if not item.owner_id),
        "missingDepartment": sum(1 for item in gaps if not item.department_id),
        "missingCostCenter": sum(1 for item in gaps if not item.cost_center),
    }


def build_alert_context(candidate: AlertCandidate, *, frontend_base_url: str) -> AlertContext:
    base_url = (frontend_base_url or "").rstrip("/")
    rule_type = AlertRuleType(candidate.rule_type)
    label = rule_label(rule_type)

    if candidate.subscription is not None:
        fields = _subscription_fields(candidate)
        title = OVERDUE_TITLE if rule_type == AlertRuleType.OVERDUE else RENEWAL_TITLE
        return AlertContext(
            rule_type=rule_type.value,
            rule_label=label,
            due_date=candidate.due_date,
            title=title,
            text=_subscription_text(title, candidate, fields),
            url=f"{base_url}/subscriptions/{fields['id']}",
            subscription=fields,
        )

    if rule_type == AlertRuleType.DATA_QUALITY:
        summary = _data_quality_summary(candidate)
        text = (
            f"{DATA_QUALITY_TITLE}\n\n"
            f"Found {summary['total']} subscriptions with missing data:\n"
            f"- Missing owner: {summary['missingOwner']}\n"
            f"- Missing department: {summary['missingDepartment']}\n"
            f"- Missing cost center: {summary['missingCostCenter']}\n\n"
            "Please review and update these subscriptions."
        )
        return AlertContext(
            rule_type=rule_type.value,
            rule_label=label,
            due_date=candidate.due_date,
            title=DATA_QUALITY_TITLE,
            text=text,
            url=f"{base_url}/subscriptions",
            summary=summary,
        )

    aggregate = candidate.aggregate
    summary = {
        "month": candidate.due_date.strftime("%B %Y"),
        "activeCount": aggregate.active_count if aggregate else 0,
        "totalMonthlyAmount": format_amount(
            aggregate.total_monthly_amount if aggregate else 0,
            aggregate.currency if aggregate else None,
        ),
        "upcomingCount": aggregate.upcoming_count if aggregate else 0,
    }
    text = (
        f"{MONTHLY_TITLE} - {summary['month']}\n\n"
        f"Active Subscriptions: {summary['activeCount']}\n"
        f"Total Monthly Spend: {summary['totalMonthlyAmount']}\n"
        f"Upcoming Renewals (30 days): {summary['upcomingCount']}\n\n"
        f"View details: {base_url}"
    )
    return AlertContext(
        rule_type=rule_type.value,
        rule_label=label,
        due_date=candidate.due_date,
        title=f"{MONTHLY_TITLE} - {summary['month']}",
        text=text,
        url=base_url,
        summary=summary,
    )


def _key_value(label: str, content: str) -> Dict[str, Any]:
    return {"keyValue": {"topLabel": label, "content": content}}


def _render_google_chat(context: AlertContext) -> Dict[str, Any]:
    fields = context.subscription
    if not fields:
        return {"text": context.text}
    return {
        "cards": [
            {
                "header": {"title": context.title, "subtitle": context.subtitle},
                "sections": [
                    {
                        "widgets": [
                            _key_value("Renewal Date", fields["renewalDate"]),
                            _key_value("Amount", fields["amount"]),
                            _key_value("Billing Cycle", fields["billingCycle"]),
                            _key_value("Department", fields["department"]),
                            _key_value("Owner", fields["owner"]),
                        ]
                    },
                    {
                        "widgets": [
                            {
                                "buttons": [
                                    {
                                        "textButton": {
                                            "text": BUTTON_TEXT,
                                            "onClick": {"openLink": {"url": context.url}},
                                        }
                                    }
                                ]
                            }
                        ]
                    },
                ],
            }
        ]
    }


def _render_slack(context: AlertContext) -> Dict[str, Any]:
    fields = context.subscription
    if not fields:
        return {"text": context.text}
    blocks: List[Dict[str, Any]] = [
        {"type": "header", "text": {"type": "plain_text", "text": context.title}},
        {"type": "section", "text": {"type": "mrkdwn", "text": f"*{context.subtitle}*"}},
        {
            "type": "section",
            "fields": [
                {"type": "mrkdwn", "text": f"*Renewal Date*\n{fields['renewalDate']}"},
                {"type": "mrkdwn", "text": f"*Amount*\n{fields['amount']}"},
                {"type": "mrkdwn", "text": f"*Billing Cycle*\n{fields['billingCycle']}"},
                {"type": "mrkdwn", "text": f"*Department*\n{fields['department']}"},
                {"type": "mrkdwn", "text": f"*Owner*\n{fields['owner']}"},
            ],
        },
        {
            "type": "actions",
            "elements": [
                {"type": "button", "text": {"type": "plain_text", "text": BUTTON_TEXT}, "url": context.url}
            ],
        },
    ]
    return {"text": context.text, "blocks": blocks}


def _render_webhook(context: AlertContext) -> Dict[str, Any]:
    return {
        "event": "subscription.alert",
        "ruleType": context.rule_type,
        "ruleLabel": context.rule_label,
        "dueDate": context.due_date.isoformat(),
        "title": context.title,
        "text": context.text,
        "url": context.url,
        "subscription": dict(context.subscription) if context.subscription else None,
        "summary": dict(context.summary) if context.summary else None,
    }


PAYLOAD_RENDERERS: Dict[str, Callable[[AlertContext], Dict[str, Any]]] = {
    CHANNEL_GOOGLE_CHAT: _render_google_chat,
    CHANNEL_SLACK: _render_slack,
    CHANNEL_WEBHOOK: _render_webhook,
}


def render_channel_payload(kind: str, context: AlertContext) -> Dict[str, Any]:
    renderer = PAYLOAD_RENDERERS.get(str(kind or "").upper())
    if renderer is None:
        raise ValueError(f"No payload renderer for channel kind '{kind}'")
    return renderer(context)


__all__ = [
    "AlertContext",
    "PAYLOAD_RENDERERS",
    "build_alert_context",
    "format_amount",
    "format_day",
    "render_channel_payload",
]
