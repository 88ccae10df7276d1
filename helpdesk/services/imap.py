from __future__ import annotations

import asyncio
import email
import hashlib
import html
import imaplib
import re
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from email.header import decode_header, make_header
from email.utils import getaddresses, parsedate_to_datetime
from typing import Any, AsyncIterator, Callable

import bleach

from helpdesk.core.config import Settings, get_settings
from helpdesk.core.errors import ConnectionFailed, ValidationError
from helpdesk.core.logging import log_error, log_info, log_warning
from helpdesk.repositories.mail_settings import MailSettingsRepository
from helpdesk.security.encryption import decrypt_secret, encrypt_secret
from helpdesk.services.audit import ActivityLogger
from helpdesk.services.auth import AuthenticatedUser
from helpdesk.services.classification import derive_category, derive_priority, is_ticket_email
from helpdesk.services.companies import CompanyService
from helpdesk.services.tickets import TICKET_STATUSES, TicketService

MAX_BODY_LENGTH = 5000
UNSEEN_BATCH_LIMIT = 50
ALL_BATCH_LIMIT = 5
MAX_BATCH_LIMIT = 50
DEFAULT_LOOKBACK_DAYS = 7

_BLOCK_BREAK_PATTERN = re.compile(r"(?i)<br\s*/?>|</p\s*>|</div\s*>|</tr\s*>|</li\s*>")
_SCRIPT_STYLE_PATTERN = re.compile(r"(?is)<(script|style)\b.*?</\1>")
_WHITESPACE_PATTERN = re.compile(r"[ \t\r\f\v\xa0]+")
_STATUS_COUNT_PATTERN = re.compile(r"(MESSAGES|UNSEEN)\s+(\d+)", re.IGNORECASE)

MailboxFactory = Callable[[str, int, float], imaplib.IMAP4]


def _default_mailbox_factory(host: str, port: int, timeout: float) -> imaplib.IMAP4:
    return imaplib.IMAP4_SSL(host, port, timeout=timeout)


@dataclass
class MailCredentials:
    address: str
    password: str = field(repr=False)
    host: str = "imap.gmail.com"
    port: int = 993


@dataclass
class MailEnvelope:
    uid: str
    message_id: str
    subject: str
    from_address: str
    from_name: str | None
    to_address: str | None
    date: datetime | None
    body: str


def _decode_header_value(raw: str | None) -> str:
    if not raw:
        return ""
    try:
        return str(make_header(decode_header(raw))).strip()
    except (LookupError, UnicodeError, ValueError):
        return raw.strip()


def _html_to_text(markup: str) -> str:
    text = _SCRIPT_STYLE_PATTERN.sub(" ", markup)
    text = _BLOCK_BREAK_PATTERN.sub("\n", text)
    text = html.unescape(bleach.clean(text, tags=[], strip=True, strip_comments=True))
    lines = [_WHITESPACE_PATTERN.sub(" ", line).strip() for line in text.splitlines()]
    return "\n".join(line for line in lines if line)


def _decode_part(part: email.message.Message) -> str:
    payload = part.get_payload(decode=True) or b""
    try:
        return payload.decode(part.get_content_charset() or "utf-8", errors="replace").strip()
    except LookupError:
        return payload.decode("utf-8", errors="replace").strip()


def _extract_text_body(message: email.message.Message) -> str:
    plain_parts: list[str] = []
    html_parts: list[str] = []
    parts = message.walk() if message.is_multipart() else [message]
    for part in parts:
        if part.get_content_maintype() == "multipart":
            continue
        if (part.get_content_disposition() or "").lower() == "attachment":
            continue
        content_type = (part.get_content_type() or "").lower()
        if content_type == "text/plain":
            plain_parts.append(_decode_part(part))
        elif content_type == "text/html":
            html_parts.append(_decode_part(part))
    if any(plain_parts):
        return "\n\n".join(fragment for fragment in plain_parts if fragment).strip()
    if html_parts:
        return _html_to_text("\n".join(html_parts))
    return ""


def _synthesise_message_id(message: email.message.Message, body: str) -> str:
    seed = "|".join(
        (
            message.get("From", ""),
            message.get("To", ""),
            message.get("Subject", ""),
            message.get("Date", ""),
            body[:1000],
        )
    )
    return f"<{hashlib.sha256(seed.encode('utf-8', errors='replace')).hexdigest()}@helpdesk.local>"


def parse_message(uid: str, raw: bytes) -> MailEnvelope:
    """Turn a raw RFC 822 message into the fields ingestion works with."""
    message = email.message_from_bytes(raw)
    subject = _decode_header_value(message.get("Subject")) or "No Subject"

    senders = getaddresses([message.get("From", "")])
    from_name, from_address = senders[0] if senders else ("", "")
    recipients = getaddresses([message.get("To", "")])
    to_address = recipients[0][1] if recipients and recipients[0][1] else None

    received: datetime | None = None
    raw_date = message.get("Date")
    if raw_date:
        try:
            received = parsedate_to_datetime(raw_date)
        except (TypeError, ValueError, IndexError, OverflowError):
            received = None
        if received is not None:
            if received.tzinfo is None:
                received = received.replace(tzinfo=timezone.utc)
            else:
                received = received.astimezone(timezone.utc)

    body = _extract_text_body(message)
    message_id = (message.get("Message-ID") or "").strip()
    if not message_id:
        message_id = _synthesise_message_id(message, body)

    return MailEnvelope(
        uid=uid,
        message_id=message_id,
        subject=subject,
        from_address=(from_address or "").strip().lower(),
        from_name=_decode_header_value(from_name) or None,
        to_address=(to_address or "").strip().lower() or None,
        date=received,
        body=body[:MAX_BODY_LENGTH],
    )


def _set_timeout(mailbox: imaplib.IMAP4, timeout: float) -> None:
    sock = getattr(mailbox, "sock", None)
    if sock is not None:
        sock.settimeout(timeout)


def _safe_logout(mailbox: imaplib.IMAP4) -> None:
    try:
        mailbox.logout()
    except (imaplib.IMAP4.error, OSError) as exc:
        log_warning("IMAP logout failed", error=str(exc))


def _describe(exc: BaseException, secret: str) -> str:
    text = str(exc)
    if isinstance(exc, imaplib.IMAP4.error) and exc.args:
        first = exc.args[0]
        text = first.decode("utf-8", errors="replace") if isinstance(first, bytes) else str(first)
    if secret:
        text = text.replace(secret, "***")
    return text or type(exc).__name__


def _extract_message_bytes(fetch_data: Any) -> bytes | None:
    for item in fetch_data or ():
        if isinstance(item, tuple) and len(item) >= 2 and isinstance(item[1], (bytes, bytearray)):
            return bytes(item[1])
    return None


class MailIngestionService:
    """Polls the configured mailbox and converts support mail into tickets."""

    def __init__(
        self,
        tickets: TicketService,
        mail_settings: MailSettingsRepository,
        companies: CompanyService,
        activity: ActivityLogger,
        settings: Settings | None = None,
        *,
        mailbox_factory: MailboxFactory | None = None,
    ) -> None:
        self._tickets = tickets
        self._mail_settings = mail_settings
        self._companies = companies
        self._activity = activity
        self._settings = settings or get_settings()
        self._mailbox_factory = mailbox_factory or _default_mailbox_factory

    async def resolve_credentials(self) -> tuple[MailCredentials, str]:
        """Return the mailbox credentials and the status given to new tickets."""
        stored = await self._mail_settings.get_settings()
        default_status = (stored or {}).get("default_status") or "new"
        if stored and stored.get("mail_address") and stored.get("app_password_encrypted"):
            address = stored["mail_address"]
            password = decrypt_secret(stored["app_password_encrypted"])
        else:
            address = self._settings.mail_address
            secret = self._settings.mail_app_password
            password = secret.get_secret_value() if secret else ""
        if not address or not password:
            raise ValidationError("Mail settings are not configured")
        credentials = MailCredentials(
            address=address.strip(),
            password="".join(password.split()),
            host=self._settings.imap_host,
            port=self._settings.imap_port,
        )
        return credentials, default_status

    def _connect(self, credentials: MailCredentials) -> imaplib.IMAP4:
        deadline = time.monotonic() + self._settings.imap_operation_timeout
        try:
            mailbox = self._mailbox_factory(
                credentials.host, credentials.port, self._settings.imap_connect_timeout
            )
        except (imaplib.IMAP4.error, OSError) as exc:
            raise ConnectionFailed(
                f"Unable to connect to mail server {credentials.host}:{credentials.port}: "
                f"{_describe(exc, credentials.password)}"
            ) from None

        try:
            _set_timeout(mailbox, self._settings.imap_auth_timeout)
            mailbox.login(credentials.address, credentials.password)
        except imaplib.IMAP4.error as exc:
            _safe_logout(mailbox)
            raise ConnectionFailed(
                f"Mail server rejected the login: {_describe(exc, credentials.password)}",
                credentials_rejected=True,
            ) from None
        except OSError as exc:
            _safe_logout(mailbox)
            raise ConnectionFailed(
                f"Mail server authentication failed: {_describe(exc, credentials.password)}"
            ) from None

        if time.monotonic() > deadline:
            _safe_logout(mailbox)
            raise ConnectionFailed("Mail server connection exceeded the operation timeout")
        _set_timeout(mailbox, self._settings.imap_operation_timeout)
        return mailbox

    @asynccontextmanager
    async def open_mailbox(self, credentials: MailCredentials) -> AsyncIterator[imaplib.IMAP4]:
        """Connect and log in; the session is logged out on every exit path."""
        mailbox = await asyncio.to_thread(self._connect, credentials)
        try:
            yield mailbox
        finally:
            await asyncio.to_thread(_safe_logout, mailbox)

    async def check_inbox(self) -> dict[str, Any]:
        credentials, _ = await self.resolve_credentials()
        async with self.open_mailbox(credentials) as mailbox:
            try:
                result, data = await asyncio.to_thread(
                    mailbox.status, "INBOX", "(MESSAGES UNSEEN)"
                )
            except (imaplib.IMAP4.error, OSError) as exc:
                raise ConnectionFailed(
                    f"Unable to read mailbox status: {_describe(exc, credentials.password)}"
                ) from None
        if result != "OK" or not data:
            raise ConnectionFailed("Mail server did not return mailbox status")
        raw = data[0].decode("utf-8", errors="replace") if isinstance(data[0], bytes) else str(data[0])
        counts = {key.upper(): int(value) for key, value in _STATUS_COUNT_PATTERN.findall(raw)}
        return {
            "address": credentials.address,
            "mailbox": "INBOX",
            "total": counts.get("MESSAGES", 0),
            "unseen": counts.get("UNSEEN", 0),
        }

    def _search(self, mailbox: imaplib.IMAP4, unread_only: bool, days: int) -> list[bytes]:
        if unread_only:
            result, data = mailbox.uid("search", None, "UNSEEN")
        else:
            since = (datetime.now(timezone.utc) - timedelta(days=days)).strftime("%d-%b-%Y")
            result, data = mailbox.uid("search", None, "SINCE", since)
        if result != "OK" or not data or not data[0]:
            return []
        return data[0].split()

    async def sync(
        self,
        *,
        unread_only: bool = True,
        limit: int | None = None,
        days: int = DEFAULT_LOOKBACK_DAYS,
        actor: AuthenticatedUser | None = None,
    ) -> dict[str, Any]:
        """Run one ingestion poll and return its summary.

        Per-message problems are collected in ``failures``; a connection
        problem aborts the poll with :class:`ConnectionFailed`.
        """
        credentials, default_status = await self.resolve_credentials()
        if default_status not in TICKET_STATUSES:
            default_status = "new"
        cap = UNSEEN_BATCH_LIMIT if unread_only else ALL_BATCH_LIMIT
        if limit is not None:
            cap = max(1, min(int(limit), MAX_BATCH_LIMIT))

        summary: dict[str, Any] = {
            "emails_found": 0,
            "tickets_processed": 0,
            "tickets_created": 0,
            "tickets_updated": 0,
            "emails_skipped": 0,
            "failures": [],
            "marked_seen": 0,
        }
        handled: list[bytes] = []

        async with self.open_mailbox(credentials) as mailbox:
            try:
                result, _ = await asyncio.to_thread(mailbox.select, "INBOX")
                if result != "OK":
                    raise ConnectionFailed("Unable to open INBOX")
                uids = await asyncio.to_thread(self._search, mailbox, unread_only, max(1, days))
            except (imaplib.IMAP4.error, OSError) as exc:
                raise ConnectionFailed(
                    f"Mailbox search failed: {_describe(exc, credentials.password)}"
                ) from None

            batch = uids[-cap:]
            summary["emails_found"] = len(batch)
            log_info(
                "Mail ingestion started",
                found=len(uids),
                batch=len(batch),
                unread_only=unread_only,
            )

            for raw_uid in batch:
                uid = raw_uid.decode("utf-8", errors="ignore")
                try:
                    result, fetch_data = await asyncio.to_thread(
                        mailbox.uid, "fetch", raw_uid, "(BODY.PEEK[])"
                    )
                except (imaplib.IMAP4.abort, OSError) as exc:
                    raise ConnectionFailed(
                        f"Mail server connection lost: {_describe(exc, credentials.password)}"
                    ) from None
                except imaplib.IMAP4.error as exc:
                    summary["failures"].append({"uid": uid, "error": str(exc)})
                    continue
                message_bytes = _extract_message_bytes(fetch_data) if result == "OK" else None
                if message_bytes is None:
                    summary["failures"].append({"uid": uid, "error": "Unable to fetch message"})
                    continue

                try:
                    envelope = parse_message(uid, message_bytes)
                except Exception as exc:  # malformed mail must not stop the batch
                    log_error("Failed to parse mail message", uid=uid, error=str(exc))
                    summary["failures"].append({"uid": uid, "error": f"Parse error: {exc}"})
                    continue

                if not is_ticket_email(envelope.from_address, envelope.subject, envelope.body):
                    summary["emails_skipped"] += 1
                    handled.append(raw_uid)
                    log_info("Skipping automated mail", uid=uid, sender=envelope.from_address)
                    continue

                try:
                    company = await self._companies.find_by_email(envelope.from_address)
                    _, created = await self._tickets.save_ticket(
                        message_id=envelope.message_id,
                        subject=envelope.subject,
                        body=envelope.body,
                        from_email=envelope.from_address,
                        to_email=envelope.to_address or credentials.address,
                        status=default_status,
                        priority=derive_priority(envelope.subject, envelope.body),
                        category=derive_category(envelope.subject, envelope.body),
                        source="email",
                        date_received=envelope.date,
                        customer_name=envelope.from_name,
                        customer_email=envelope.from_address or None,
                        company_id=company["id"] if company else None,
                    )
                except Exception as exc:
                    log_error("Failed to save ticket from mail", uid=uid, error=str(exc))
                    summary["failures"].append({"uid": uid, "error": str(exc)})
                    continue

                summary["tickets_processed"] += 1
                summary["tickets_created" if created else "tickets_updated"] += 1
                handled.append(raw_uid)

            for raw_uid in handled:
                try:
                    await asyncio.to_thread(mailbox.uid, "store", raw_uid, "+FLAGS", "(\\Seen)")
                except (imaplib.IMAP4.error, OSError) as exc:
                    log_error(
                        "Unable to mark message as read",
                        uid=raw_uid.decode("utf-8", errors="ignore"),
                        error=str(exc),
                    )
                    continue
                summary["marked_seen"] += 1

        log_info(
            "Mail ingestion completed",
            created=summary["tickets_created"],
            updated=summary["tickets_updated"],
            skipped=summary["emails_skipped"],
            failures=len(summary["failures"]),
        )
        self._activity.record(
            action="mail_sync",
            user_id=actor.id if actor else None,
            resource_type="mailbox",
            details={key: value for key, value in summary.items() if key != "failures"},
        )
        return summary

    async def get_mail_settings(self) -> dict[str, Any]:
        stored = await self._mail_settings.get_settings()
        if stored:
            return {
                "mail_address": stored["mail_address"],
                "has_app_password": bool(stored.get("app_password_encrypted")),
                "refresh_interval": int(stored["refresh_interval"]),
                "default_status": stored["default_status"],
                "updated_at": stored.get("updated_at"),
                "source": "database",
            }
        return {
            "mail_address": self._settings.mail_address,
            "has_app_password": self._settings.mail_app_password is not None,
            "refresh_interval": 5,
            "default_status": "new",
            "updated_at": None,
            "source": "environment",
        }

    async def update_mail_settings(
        self,
        *,
        mail_address: str,
        app_password: str | None,
        refresh_interval: int,
        default_status: str,
        actor: AuthenticatedUser,
    ) -> dict[str, Any]:
        if not 1 <= int(refresh_interval) <= 60:
            raise ValidationError("Refresh interval must be between 1 and 60 minutes")
        status = (default_status or "").strip().lower()
        if status not in TICKET_STATUSES:
            raise ValidationError(
                "Invalid default status", details={"allowed": list(TICKET_STATUSES)}
            )
        encrypted = None
        if app_password:
            encrypted = encrypt_secret("".join(app_password.split()))
        elif not await self._mail_settings.get_settings():
            raise ValidationError("An app password is required")
        await self._mail_settings.save_settings(
            mail_address=mail_address.strip().lower(),
            app_password_encrypted=encrypted,
            refresh_interval=int(refresh_interval),
            default_status=status,
        )
        self._activity.record(
            action="mail_settings_updated",
            user_id=actor.id,
            resource_type="mail_settings",
            details={"mail_address": mail_address, "password_changed": bool(app_password)},
        )
        return await self.get_mail_settings()
