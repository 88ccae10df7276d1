from . import activity, auth, companies, mail, setup, tickets, users

__all__ = [
    "activity",
    "auth",
    "companies",
    "mail",
    "setup",
    "tickets",
    "users",
]
