import pytest

from helpdesk.services import classification


@pytest.mark.parametrize(
    "sender,subject,body",
    [
        ("noreply@service.example", "Your receipt", "Thanks"),
        ("billing-noreply@vendor.example", "Invoice due", "Amount owed"),
        ("MAILER-DAEMON@mx.example", "Undeliverable", "Delivery failed"),
        ("news@shop.example", "Weekly Newsletter", "Deals inside"),
        ("person@example.com", "Hello", "Click here to unsubscribe"),
    ],
)
def test_automated_mail_is_not_a_ticket(sender, subject, body):
    assert classification.is_ticket_email(sender, subject, body) is False


def test_customer_mail_is_a_ticket():
    assert classification.is_ticket_email("customer@example.com", "Login broken", "Help") is True


def test_missing_fields_are_treated_as_empty():
    assert classification.is_ticket_email(None, None, None) is True
    assert classification.derive_category(None, None) == "general"
    assert classification.derive_priority(None, None) == "medium"


def test_category_uses_first_matching_rule():
    # "login" (account) is listed before "urgent"
    assert classification.derive_category("Login broken, urgent!!!", "") == "account"
    assert classification.derive_category("Invoice question", "payment failed with an error") == "billing"
    assert classification.derive_category("Found a bug", "") == "technical"
    assert classification.derive_category("Feature idea", "") == "feature-request"
    assert classification.derive_category("How to export", "") == "support"
    assert classification.derive_category("Emergency", "") == "urgent"
    assert classification.derive_category("Hello there", "Just saying hi") == "general"


def test_priority_uses_first_matching_rule():
    assert classification.derive_priority("URGENT: server down", "") == "critical"
    assert classification.derive_priority("Login broken, urgent!!!", "") == "high"
    assert classification.derive_priority("Please reply asap", "") == "high"
    assert classification.derive_priority("Question", "low priority, no rush") == "low"
    assert classification.derive_priority("Question", "When you can") == "medium"


def test_matching_is_case_insensitive():
    assert classification.derive_priority("CRITICAL", "") == "critical"
    assert classification.derive_category("PASSWORD reset", "") == "account"
