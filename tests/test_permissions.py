import pytest

from helpdesk.services import permissions
from helpdesk.services.permissions import (
    ADMIN_ACCESS,
    CUSTOMER_ACCESS,
    SETTINGS_ACCESS,
    TICKET_MANAGEMENT,
    USER_MANAGEMENT,
    Role,
)


def test_admin_holds_every_staff_capability():
    assert permissions.permissions_for(Role.ADMIN) == (
        ADMIN_ACCESS,
        TICKET_MANAGEMENT,
        USER_MANAGEMENT,
        SETTINGS_ACCESS,
    )


def test_agent_and_customer_capabilities():
    assert permissions.permissions_for("agent") == (TICKET_MANAGEMENT, SETTINGS_ACCESS)
    assert permissions.permissions_for("customer") == (CUSTOMER_ACCESS, SETTINGS_ACCESS)


@pytest.mark.parametrize("raw", [" Admin ", "ADMIN", "admin", Role.ADMIN])
def test_role_strings_are_normalised_before_lookup(raw):
    assert permissions.parse_role(raw) is Role.ADMIN
    assert USER_MANAGEMENT in permissions.permissions_for(raw)


@pytest.mark.parametrize("raw", [" Agent", "CUSTOMER ", "weird", "", None])
def test_normalize_role_is_idempotent(raw):
    once = permissions.normalize_role(raw)
    assert permissions.normalize_role(once) == once


@pytest.mark.parametrize("raw", ["superuser", "", None, "admin2"])
def test_unknown_roles_resolve_to_no_capabilities(raw):
    assert permissions.parse_role(raw) is None
    assert permissions.permissions_for(raw) == ()
    assert SETTINGS_ACCESS not in permissions.permissions_for(raw)


def test_customers_cannot_manage_tickets():
    assert TICKET_MANAGEMENT not in permissions.permissions_for(Role.CUSTOMER)
    assert ADMIN_ACCESS not in permissions.permissions_for(Role.AGENT)
