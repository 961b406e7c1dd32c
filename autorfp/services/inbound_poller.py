"""Inbound poller — one incremental pass over the reply mailbox.

Per cycle: read the durable cursor, fetch UIDs above it, parse, correlate,
then insert accepted messages and advance the cursor in ONE transaction
(messages first, cursor second). A crash before commit loses neither.

Business Rules:
- Mailbox reports zero messages → cursor reset to 0 (mailbox was emptied)
- Cursor advances to the highest UID seen, including skipped messages
- Inbound Message rows are never modified after insert

Called by: scheduler.py, routers/mailbox.py
Depends on: services/mailbox.py, services/correlation.py, models
"""

from dataclasses import dataclass

from loguru import logger
from sqlalchemy.orm import sessionmaker

from ..config import settings
from ..models import Direction, MailboxCursor, Message
from .correlation import resolve_batch
from .mailbox import ImapMailbox, envelope_or_none


@dataclass
class PollStats:
    fetched: int = 0
    stored: int = 0
    skipped: int = 0
    watermark: int = 0


def _load_cursor(db, mailbox: str) -> MailboxCursor:
    cursor = db.query(MailboxCursor).filter(MailboxCursor.mailbox == mailbox).first()
    if cursor is None:
        cursor = MailboxCursor(mailbox=mailbox, last_uid=0)
        db.add(cursor)
        db.flush()
    return cursor


class InboundPoller:
    def __init__(self, session_factory: sessionmaker, mailbox: ImapMailbox | None = None):
        self.session_factory = session_factory
        self.mailbox = mailbox or ImapMailbox()

    @property
    def cursor_key(self) -> str:
        return f"{self.mailbox.user or settings.imap_user}:{self.mailbox.mailbox}"

    async def poll(self) -> PollStats:
        with self.session_factory() as db:
            cursor = _load_cursor(db, self.cursor_key)
            last_uid = cursor.last_uid
            db.commit()

        # Network round trip happens with no session open
        exists, fetched = await self.mailbox.fetch_above(last_uid)
        stats = PollStats(fetched=len(fetched), watermark=last_uid)

        if exists == 0:
            with self.session_factory() as db:
                cursor = _load_cursor(db, self.cursor_key)
                if cursor.last_uid != 0:
                    logger.info("Mailbox {} is empty; resetting cursor to 0", self.cursor_key)
                cursor.last_uid = 0
                db.commit()
            stats.watermark = 0
            return stats

        if not fetched:
            return stats

        envelopes = []
        for item in fetched:
            env = envelope_or_none(item)
            if env is not None:
                envelopes.append(env)
        watermark = max(item.uid for item in fetched)

        with self.session_factory() as db:
            try:
                resolution = resolve_batch(db, envelopes)
                for reply in resolution.accepted:
                    env = reply.envelope
                    db.add(
                        Message(
                            request_id=reply.request.id,
                            participant_id=reply.participant.id,
                            direction=Direction.INBOUND,
                            subject=env.subject,
                            body_text=env.body_text,
                            body_html=env.body_html,
                            message_id=env.message_id,
                            received_at=env.received_at,
                        )
                    )
                db.flush()
                cursor = _load_cursor(db, self.cursor_key)
                cursor.last_uid = max(cursor.last_uid, watermark)
                db.commit()
            except Exception:
                db.rollback()
                logger.exception("Poll commit failed for {}; cursor left at {}", self.cursor_key, last_uid)
                raise

        stats.stored = len(resolution.accepted)
        stats.skipped = len(fetched) - stats.stored
        stats.watermark = max(last_uid, watermark)
        logger.info(
            "Poll {} | fetched={} stored={} skipped={} watermark={}",
            self.cursor_key, stats.fetched, stats.stored, stats.skipped, stats.watermark,
        )
        return stats
