import imaplib

import pytest

from helpdesk.core.errors import ConnectionFailed, ValidationError
from helpdesk.repositories.audit_logs import ActivityLogRepository
from helpdesk.repositories.companies import CompanyRepository
from helpdesk.repositories.mail_settings import MailSettingsRepository
from helpdesk.repositories.tickets import TicketRepository
from helpdesk.services import imap
from helpdesk.services.audit import ActivityLogger
from helpdesk.services.companies import CompanyService
from helpdesk.services.imap import MailIngestionService
from helpdesk.services.tickets import TicketService


def _raw_message(sender, subject, body, message_id=None, date="Mon, 05 Oct 2026 10:00:00 +0000"):
    headers = [
        f"From: {sender}",
        "To: support@example.com",
        f"Subject: {subject}",
        f"Date: {date}",
    ]
    if message_id:
        headers.append(f"Message-ID: {message_id}")
    return ("\r\n".join(headers) + "\r\n\r\n" + body + "\r\n").encode("utf-8")


INVOICE = _raw_message(
    "Billing <billing-noreply@vendor.example>", "Invoice due", "Your invoice is attached.", "<inv-1@vendor.example>"
)
LOGIN = _raw_message(
    "Casey Customer <customer@example.com>", "Login broken, urgent!!!", "I cannot sign in.", "<login-1@example.com>"
)


class FakeMailbox:
    def __init__(self, messages, *, login_error=None, select_error=None, store_error=None):
        self.messages = messages
        self.login_error = login_error
        self.select_error = select_error
        self.store_error = store_error
        self.logged_in_with = None
        self.logged_out = False
        self.searches = []
        self.fetches = []
        self.stored = []

    def login(self, user, password):
        if self.login_error:
            raise self.login_error
        self.logged_in_with = (user, password)
        return "OK", [b"Logged in"]

    def select(self, mailbox):
        if self.select_error:
            raise self.select_error
        return "OK", [str(len(self.messages)).encode()]

    def status(self, mailbox, names):
        return "OK", [f'"{mailbox}" (MESSAGES {len(self.messages)} UNSEEN 1)'.encode()]

    def uid(self, command, *args):
        if command == "search":
            self.searches.append(args)
            return "OK", [b" ".join(self.messages.keys())]
        if command == "fetch":
            uid = args[0]
            self.fetches.append((uid, args[1]))
            raw = self.messages[uid]
            return "OK", [(b"%s (UID %s BODY[] {%d}" % (uid, uid, len(raw)), raw), b")"]
        if command == "store":
            if self.store_error:
                raise self.store_error
            self.stored.append(args[0])
            return "OK", [b""]
        raise AssertionError(f"unexpected command {command}")

    def logout(self):
        self.logged_out = True
        return "BYE", [b""]


@pytest.fixture
def activity(database):
    return ActivityLogger(ActivityLogRepository(database))


@pytest.fixture
def ticket_repository(database):
    return TicketRepository(database)


def _service(database, activity, settings, mailbox):
    seen = {}

    def factory(host, port, timeout):
        seen["args"] = (host, port, timeout)
        return mailbox

    service = MailIngestionService(
        TicketService(TicketRepository(database), activity, settings),
        MailSettingsRepository(database),
        CompanyService(CompanyRepository(database), activity),
        activity,
        settings,
        mailbox_factory=factory,
    )
    return service, seen


def test_parse_message_extracts_envelope_fields():
    envelope = imap.parse_message("7", LOGIN)

    assert envelope.uid == "7"
    assert envelope.message_id == "<login-1@example.com>"
    assert envelope.subject == "Login broken, urgent!!!"
    assert envelope.from_address == "customer@example.com"
    assert envelope.from_name == "Casey Customer"
    assert envelope.to_address == "support@example.com"
    assert envelope.date.isoformat() == "2026-10-05T10:00:00+00:00"
    assert envelope.body.strip() == "I cannot sign in."


def test_parse_message_synthesises_stable_id_and_truncates_body():
    raw = _raw_message("a@example.com", "No id here", "x" * 6000)

    first = imap.parse_message("1", raw)
    second = imap.parse_message("1", raw)

    assert first.message_id == second.message_id
    assert first.message_id.endswith("@helpdesk.local>")
    assert len(first.body) == imap.MAX_BODY_LENGTH


def test_parse_message_prefers_plain_text_and_strips_html():
    raw = (
        b"From: a@example.com\r\nSubject: =?utf-8?q?Caf=C3=A9?=\r\nMessage-ID: <h@example.com>\r\n"
        b"MIME-Version: 1.0\r\nContent-Type: text/html; charset=utf-8\r\n\r\n"
        b"<html><style>p{}</style><body><p>Hello&nbsp;<b>there</b></p></body></html>\r\n"
    )

    envelope = imap.parse_message("2", raw)

    assert envelope.subject == "Café"
    assert "<" not in envelope.body
    assert "Hello" in envelope.body and "there" in envelope.body
    assert "p{}" not in envelope.body


def test_parse_message_drops_attributes_and_comments_from_html():
    raw = (
        b"From: a@example.com\r\nSubject: Link\r\nMessage-ID: <h2@example.com>\r\n"
        b"MIME-Version: 1.0\r\nContent-Type: text/html; charset=utf-8\r\n\r\n"
        b'<p>Hello <a title="x>y" href="#">link</a> <!-- <b>hidden</b> --></p>'
        b"<div>Fish &amp; chips</div>\r\n"
    )

    envelope = imap.parse_message("3", raw)

    assert envelope.body == "Hello link\nFish & chips"


@pytest.mark.anyio
async def test_sync_creates_one_ticket_and_skips_automated_mail(database, activity, settings, ticket_repository):
    mailbox = FakeMailbox({b"1": INVOICE, b"2": LOGIN})
    service, seen = _service(database, activity, settings, mailbox)

    summary = await service.sync()
    await activity.drain()

    assert summary["emails_found"] == 2
    assert summary["tickets_created"] == 1
    assert summary["tickets_updated"] == 0
    assert summary["emails_skipped"] == 1
    assert summary["failures"] == []
    assert summary["marked_seen"] == 2
    assert mailbox.searches == [(None, "UNSEEN")]
    assert all(part == "(BODY.PEEK[])" for _, part in mailbox.fetches)
    assert mailbox.logged_in_with == ("support@example.com", "abcdefghijklmnop")
    assert mailbox.logged_out is True
    assert seen["args"] == ("imap.gmail.com", 993, settings.imap_connect_timeout)

    stored = await ticket_repository.list_tickets()
    assert len(stored) == 1
    ticket = stored[0]
    assert ticket["message_id"] == "<login-1@example.com>"
    assert ticket["category"] == "account"
    assert ticket["priority"] == "high"
    assert ticket["status"] == "new"
    assert ticket["source"] == "email"
    assert ticket["customer_email"] == "customer@example.com"
    assert ticket["customer_name"] == "Casey Customer"
    assert ticket["date_received"].isoformat() == "2026-10-05T10:00:00+00:00"


@pytest.mark.anyio
async def test_reingesting_the_same_mail_updates_in_place(database, activity, settings, ticket_repository):
    mailbox = FakeMailbox({b"2": LOGIN})
    service, _ = _service(database, activity, settings, mailbox)

    await service.sync()
    first = (await ticket_repository.list_tickets())[0]
    summary = await service.sync()
    tickets = await ticket_repository.list_tickets()

    assert summary["tickets_created"] == 0
    assert summary["tickets_updated"] == 1
    assert len(tickets) == 1
    assert tickets[0]["ticket_number"] == first["ticket_number"]
    assert tickets[0]["created_at"] == first["created_at"]


@pytest.mark.anyio
async def test_sync_links_ticket_to_company_by_domain(database, activity, settings, ticket_repository):
    company = await CompanyRepository(database).create_company(name="Example Ltd", domain="example.com")
    service, _ = _service(database, activity, settings, FakeMailbox({b"2": LOGIN}))

    await service.sync()

    assert (await ticket_repository.list_tickets())[0]["company_id"] == company["id"]


@pytest.mark.anyio
async def test_batch_limits(database, activity, settings):
    messages = {str(index).encode(): LOGIN.replace(b"login-1", b"login-%d" % index) for index in range(1, 9)}
    mailbox = FakeMailbox(messages)
    service, _ = _service(database, activity, settings, mailbox)

    summary = await service.sync(unread_only=False)

    assert summary["emails_found"] == imap.ALL_BATCH_LIMIT
    assert mailbox.searches[0][1] == "SINCE"
    # newest messages are taken first
    assert [uid for uid, _ in mailbox.fetches] == [b"4", b"5", b"6", b"7", b"8"]

    mailbox.fetches.clear()
    summary = await service.sync(limit=2)
    assert summary["emails_found"] == 2
    assert [uid for uid, _ in mailbox.fetches] == [b"7", b"8"]


@pytest.mark.anyio
async def test_rejected_login_reports_credentials_without_leaking_password(database, activity, settings):
    error = imaplib.IMAP4.error(b"[AUTHENTICATIONFAILED] Invalid credentials abcdefghijklmnop")
    mailbox = FakeMailbox({}, login_error=error)
    service, _ = _service(database, activity, settings, mailbox)

    with pytest.raises(ConnectionFailed) as excinfo:
        await service.sync()

    assert excinfo.value.status_code == 400
    assert excinfo.value.credentials_rejected is True
    assert "abcdefghijklmnop" not in excinfo.value.message
    assert "AUTHENTICATIONFAILED" in excinfo.value.message
    assert mailbox.logged_out is True


@pytest.mark.anyio
async def test_unreachable_server_is_a_connection_failure(database, activity, settings):
    service = MailIngestionService(
        TicketService(TicketRepository(database), activity, settings),
        MailSettingsRepository(database),
        CompanyService(CompanyRepository(database), activity),
        activity,
        settings,
        mailbox_factory=lambda host, port, timeout: (_ for _ in ()).throw(OSError("timed out")),
    )

    with pytest.raises(ConnectionFailed) as excinfo:
        await service.sync()

    assert excinfo.value.status_code == 500
    assert "imap.gmail.com:993" in excinfo.value.message


@pytest.mark.anyio
async def test_connection_lost_mid_poll_still_logs_out(database, activity, settings):
    mailbox = FakeMailbox({b"1": LOGIN}, select_error=imaplib.IMAP4.abort("socket closed"))
    service, _ = _service(database, activity, settings, mailbox)

    with pytest.raises(ConnectionFailed):
        await service.sync()

    assert mailbox.logged_out is True


@pytest.mark.anyio
async def test_mark_seen_failures_do_not_fail_the_poll(database, activity, settings, ticket_repository):
    mailbox = FakeMailbox({b"2": LOGIN}, store_error=imaplib.IMAP4.error("read-only"))
    service, _ = _service(database, activity, settings, mailbox)

    summary = await service.sync()

    assert summary["tickets_created"] == 1
    assert summary["marked_seen"] == 0
    assert len(await ticket_repository.list_tickets()) == 1


@pytest.mark.anyio
async def test_unparseable_message_is_recorded_and_skipped(database, activity, settings, monkeypatch):
    real_parse = imap.parse_message

    def flaky_parse(uid, raw):
        if uid == "1":
            raise ValueError("garbled headers")
        return real_parse(uid, raw)

    monkeypatch.setattr(imap, "parse_message", flaky_parse)
    mailbox = FakeMailbox({b"1": INVOICE, b"2": LOGIN})
    service, _ = _service(database, activity, settings, mailbox)

    summary = await service.sync()

    assert summary["tickets_created"] == 1
    assert summary["failures"] == [{"uid": "1", "error": "Parse error: garbled headers"}]
    assert mailbox.stored == [b"2"]


@pytest.mark.anyio
async def test_missing_credentials_are_a_validation_error(database, activity, settings):
    unconfigured = settings.model_copy(update={"mail_address": None, "mail_app_password": None})
    service, _ = _service(database, activity, unconfigured, FakeMailbox({}))

    with pytest.raises(ValidationError):
        await service.sync()


@pytest.mark.anyio
async def test_stored_settings_take_precedence_and_hide_password(database, activity, settings, monkeypatch):
    mailbox = FakeMailbox({b"2": LOGIN})
    service, _ = _service(database, activity, settings, mailbox)
    admin = type("Actor", (), {"id": None})()

    saved = await service.update_mail_settings(
        mail_address="Helpdesk@Example.com",
        app_password="wxyz wxyz wxyz wxyz",
        refresh_interval=10,
        default_status="open",
        actor=admin,
    )
    await service.sync()

    assert saved["mail_address"] == "helpdesk@example.com"
    assert saved["has_app_password"] is True
    assert "app_password" not in saved
    assert "app_password_encrypted" not in saved
    assert mailbox.logged_in_with == ("helpdesk@example.com", "wxyzwxyzwxyzwxyz")
    stored = await MailSettingsRepository(database).get_settings()
    assert "wxyz" not in stored["app_password_encrypted"]
    tickets = await TicketRepository(database).list_tickets()
    assert tickets[0]["status"] == "open"


@pytest.mark.anyio
async def test_mail_settings_validation(database, activity, settings):
    service, _ = _service(database, activity, settings, FakeMailbox({}))
    admin = type("Actor", (), {"id": None})()

    with pytest.raises(ValidationError):
        await service.update_mail_settings(
            mail_address="a@example.com", app_password="x", refresh_interval=0, default_status="new", actor=admin
        )
    with pytest.raises(ValidationError):
        await service.update_mail_settings(
            mail_address="a@example.com", app_password="x", refresh_interval=5, default_status="done", actor=admin
        )
    with pytest.raises(ValidationError):
        await service.update_mail_settings(
            mail_address="a@example.com", app_password=None, refresh_interval=5, default_status="new", actor=admin
        )


@pytest.mark.anyio
async def test_check_inbox_reports_counts(database, activity, settings):
    mailbox = FakeMailbox({b"1": INVOICE, b"2": LOGIN})
    service, _ = _service(database, activity, settings, mailbox)

    inbox = await service.check_inbox()

    assert inbox == {"address": "support@example.com", "mailbox": "INBOX", "total": 2, "unseen": 1}
    assert mailbox.logged_out is True
