"""IMAP mailbox access and inbound message parsing.

Purpose:
  Fetch raw messages above a UID watermark and turn them into envelopes the
  correlation resolver can route. Only reads; nothing is flagged or moved.

Business Rules:
  - Mailbox is selected readonly and bodies are fetched with BODY.PEEK[]
  - Blocking imaplib calls run in a worker thread (asyncio.to_thread)
  - Missing Message-ID → stable id derived from sha256 of the raw source
  - Missing subject → "(no subject)"; sender lower-cased
  - received_at = INTERNALDATE, else the Date header, else now
  - Quoted reply chains and signatures are stripped from the reply text

Called by: services/inbound_poller.py
Depends on: config
"""

import asyncio
import hashlib
import html
import imaplib
import re
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email import message_from_bytes, policy
from email.utils import getaddresses, parsedate_to_datetime

from loguru import logger

from ..config import settings

_UID_RE = re.compile(rb"UID (\d+)")


@dataclass
class FetchedMessage:
    uid: int
    raw: bytes
    internal_date: datetime | None = None


@dataclass
class InboundEnvelope:
    uid: int
    message_id: str
    subject: str
    from_address: str
    to_addresses: list[str] = field(default_factory=list)
    received_at: datetime | None = None
    body_text: str = ""
    body_html: str | None = None


class ImapMailbox:
    """Thin imaplib wrapper. One connection per fetch cycle."""

    def __init__(self, host=None, port=None, user=None, password=None,
                 mailbox=None, use_ssl=None, timeout=None):
        self.host = host or settings.imap_host
        self.port = port or settings.imap_port
        self.user = user if user is not None else settings.imap_user
        self.password = password if password is not None else settings.imap_password
        self.mailbox = mailbox or settings.imap_mailbox
        self.use_ssl = settings.imap_use_ssl if use_ssl is None else use_ssl
        self.timeout = timeout or settings.imap_timeout

    def _connect(self) -> imaplib.IMAP4:
        cls = imaplib.IMAP4_SSL if self.use_ssl else imaplib.IMAP4
        conn = cls(self.host, self.port, timeout=self.timeout)
        try:
            conn.login(self.user, self.password)
        except Exception:
            conn.shutdown()
            raise
        return conn

    def _fetch_above(self, last_uid: int) -> tuple[int, list[FetchedMessage]]:
        conn = self._connect()
        try:
            status, data = conn.select(self.mailbox, readonly=True)
            if status != "OK":
                raise imaplib.IMAP4.error(f"select {self.mailbox} failed: {data!r}")
            exists = int((data[0] or b"0").decode())
            if exists == 0:
                return 0, []

            status, payload = conn.uid(
                "FETCH", f"{last_uid + 1}:*", "(UID INTERNALDATE BODY.PEEK[])"
            )
            if status != "OK":
                raise imaplib.IMAP4.error(f"uid fetch failed: {payload!r}")
            return exists, _parse_fetch_payload(payload)
        finally:
            try:
                conn.logout()
            except (imaplib.IMAP4.error, OSError):
                pass

    async def fetch_above(self, last_uid: int) -> tuple[int, list[FetchedMessage]]:
        """Return (message count, messages with UID > last_uid)."""
        exists, fetched = await asyncio.to_thread(self._fetch_above, last_uid)
        # "N:*" always returns the highest UID even when it is below N
        return exists, [f for f in fetched if f.uid > last_uid]


def _parse_fetch_payload(payload) -> list[FetchedMessage]:
    out: list[FetchedMessage] = []
    for part in payload or []:
        if not isinstance(part, tuple) or len(part) < 2:
            continue
        meta, raw = part[0], part[1]
        m = _UID_RE.search(meta or b"")
        if not m or not isinstance(raw, (bytes, bytearray)):
            continue
        internal = None
        tt = imaplib.Internaldate2tuple(meta)
        if tt:
            internal = datetime.fromtimestamp(time.mktime(tt), timezone.utc)
        out.append(FetchedMessage(uid=int(m.group(1)), raw=bytes(raw), internal_date=internal))
    out.sort(key=lambda f: f.uid)
    return out


def _stable_message_id(raw: bytes) -> str:
    return f"<sha256-{hashlib.sha256(raw).hexdigest()}@autorfp.local>"


def parse_envelope(fetched: FetchedMessage) -> InboundEnvelope:
    """Parse a fetched message. Raises ValueError when the body cannot be decoded."""
    msg = message_from_bytes(fetched.raw, policy=policy.default)

    message_id = (msg.get("Message-ID") or "").strip() or _stable_message_id(fetched.raw)
    subject = (msg.get("Subject") or "").strip() or "(no subject)"

    senders = getaddresses([str(msg.get("From") or "")])
    from_address = (senders[0][1] if senders else "").strip().lower()

    recipient_headers = []
    for name in ("To", "Cc", "Delivered-To", "X-Original-To"):
        recipient_headers.extend(str(v) for v in msg.get_all(name, []))
    to_addresses = [addr for _, addr in getaddresses(recipient_headers) if addr]

    received_at = fetched.internal_date
    if received_at is None and msg.get("Date"):
        try:
            received_at = parsedate_to_datetime(str(msg["Date"]))
            if received_at.tzinfo is None:
                received_at = received_at.replace(tzinfo=timezone.utc)
        except (TypeError, ValueError):
            received_at = None
    if received_at is None:
        received_at = datetime.now(timezone.utc)

    text, html_body = extract_reply_text(msg)

    return InboundEnvelope(
        uid=fetched.uid,
        message_id=message_id,
        subject=subject,
        from_address=from_address,
        to_addresses=to_addresses,
        received_at=received_at,
        body_text=text,
        body_html=html_body,
    )


def _part_content(part) -> str:
    try:
        return part.get_content()
    except (LookupError, UnicodeDecodeError):
        payload = part.get_payload(decode=True) or b""
        return payload.decode("utf-8", errors="replace")


def extract_reply_text(msg) -> tuple[str, str | None]:
    """Return (reply text with quoted history removed, raw html or None).

    Accepts an email.message.Message or raw bytes.
    """
    if isinstance(msg, (bytes, bytearray)):
        msg = message_from_bytes(msg, policy=policy.default)

    plain = None
    html_body = None
    for part in msg.walk():
        if part.is_multipart():
            continue
        if part.get_content_disposition() == "attachment":
            continue
        ctype = part.get_content_type()
        if ctype == "text/plain" and plain is None:
            plain = _part_content(part)
        elif ctype == "text/html" and html_body is None:
            html_body = _part_content(part)

    if plain is None and html_body is None:
        raise ValueError("message has no text/plain or text/html body")

    text = plain if plain is not None else html_to_text(html_body)
    return strip_quoted_reply(text), html_body


def html_to_text(markup: str | None) -> str:
    if not markup:
        return ""
    text = re.sub(r"(?is)<(script|style).*?</\1>", " ", markup)
    # Keep the quoted block boundary visible so strip_quoted_reply can cut it
    text = re.sub(r"(?i)<blockquote[^>]*>", "\n-----Original Message-----\n", text)
    text = re.sub(r"<br\s*/?>|</p>|</tr>|</li>|</div>", "\n", text, flags=re.IGNORECASE)
    text = re.sub(r"<[^>]+>", " ", text)
    text = html.unescape(text)
    text = re.sub(r"[^\S\n]+", " ", text)
    return re.sub(r"\n{3,}", "\n\n", text).strip()


_CUT_PATTERNS = [
    # Attribution line, possibly wrapped once: "On <date>, <name>\n<addr> wrote:"
    re.compile(
        r"^[^\S\n]*On [^\n]{1,200}(?:\n(?![^\S\n]*On )[^\n]{1,200})?\s*wrote:[^\S\n]*$",
        re.IGNORECASE | re.MULTILINE,
    ),
    re.compile(r"^\s*-{2,}\s*Original Message\s*-{2,}\s*$", re.IGNORECASE | re.MULTILINE),
    re.compile(r"^\s*From:\s.+\n\s*Sent:\s.+$", re.IGNORECASE | re.MULTILINE),
    re.compile(r"^-- ?$", re.MULTILINE),
]


def strip_quoted_reply(text: str) -> str:
    """Cut the reply at the first quoted-history marker and drop '>' lines."""
    if not text:
        return ""
    text = text.replace("\r\n", "\n")
    cut = len(text)
    for pattern in _CUT_PATTERNS:
        m = pattern.search(text)
        if m and m.start() < cut:
            cut = m.start()
    text = text[:cut]
    lines = [line for line in text.split("\n") if not line.lstrip().startswith(">")]
    text = "\n".join(lines)
    text = re.sub(r"[^\S\n]+\n", "\n", text)
    return re.sub(r"\n{3,}", "\n\n", text).strip()


def envelope_or_none(fetched: FetchedMessage) -> InboundEnvelope | None:
    """parse_envelope, logging and returning None for unparseable messages."""
    try:
        return parse_envelope(fetched)
    except Exception as e:
        # The stdlib parser raises a mix of ValueError, LookupError and
        # AttributeError on malformed headers
        logger.warning("Skipping unparseable message uid={}: {}", fetched.uid, e)
        return None
