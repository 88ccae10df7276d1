"""Keyword heuristics deciding whether inbound mail becomes a ticket.

Matching is case-insensitive substring matching. Category and priority rules
are evaluated in order and the first match wins.
"""

from __future__ import annotations

AUTOMATION_MARKERS: tuple[str, ...] = (
    "noreply",
    "no-reply",
    "donotreply",
    "automated",
    "notification",
    "mailer-daemon",
    "postmaster",
    "delivery-status",
    "bounced",
    "unsubscribe",
    "newsletter",
    "marketing",
)

CATEGORY_RULES: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("account", ("password", "login", "access")),
    ("billing", ("payment", "billing", "invoice")),
    ("technical", ("bug", "error", "issue", "problem")),
    ("feature-request", ("feature", "request", "enhancement")),
    ("support", ("help", "how to", "tutorial")),
    ("urgent", ("urgent", "emergency")),
)
DEFAULT_CATEGORY = "general"

PRIORITY_RULES: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("critical", ("critical", "down", "emergency", "system down")),
    ("high", ("urgent", "asap", "!!!")),
    ("low", ("low priority", "no rush")),
)
DEFAULT_PRIORITY = "medium"


def _contains_any(text: str, keywords: tuple[str, ...]) -> bool:
    return any(keyword in text for keyword in keywords)


def is_ticket_email(from_address: str | None, subject: str | None, body: str | None) -> bool:
    """Reject automated senders; everything else becomes a ticket."""
    haystacks = [(value or "").lower() for value in (from_address, subject, body)]
    return not any(_contains_any(text, AUTOMATION_MARKERS) for text in haystacks)


def derive_category(subject: str | None, body: str | None) -> str:
    text = f"{subject or ''} {body or ''}".lower()
    for category, keywords in CATEGORY_RULES:
        if _contains_any(text, keywords):
            return category
    return DEFAULT_CATEGORY


def derive_priority(subject: str | None, body: str | None) -> str:
    text = f"{subject or ''} {body or ''}".lower()
    for priority, keywords in PRIORITY_RULES:
        if _contains_any(text, keywords):
            return priority
    return DEFAULT_PRIORITY
