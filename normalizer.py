from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Dict, List, Optional
import logging

import mime_decode
from relay_errors import DecodeError
from relay_models import MessageRecord

logger = logging.getLogger(__name__)

NO_SUBJECT = '(No Subject)'
UNKNOWN_SENDER = '(Unknown)'
PARSING_FAILED = '(Parsing Failed)'


def _first(headers: Dict[str, List[str]], name: str) -> Optional[str]:
    values = headers.get(name)
    if not values:
        return None
    return values[0]


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def to_iso_date(raw: Optional[str]) -> str:
    """RFC 2822 date -> ISO-8601. Unparseable dates are passed through, missing ones become now."""
    if not raw:
        return _now_iso()
    try:
        return parsedate_to_datetime(raw).isoformat()
    except (TypeError, ValueError, IndexError):
        return raw


def normalize(headers: Optional[Dict[str, List[str]]], content: Optional[bytes] = None,
              note: str = '', uid: int = 0, html_note: str = '') -> MessageRecord:
    """Build the output record for one message from its headers and fetched body, if any."""
    headers = headers or {}
    subject = _first(headers, 'subject')
    sender = _first(headers, 'from')
    date = _first(headers, 'date')
    message_id = _first(headers, 'message-id')

    body_text, body_html = note, html_note
    if content is not None:
        try:
            decoded = mime_decode.parse(content)
            body_text = decoded.text
            body_html = decoded.html or mime_decode.text_to_html(decoded.text)
            # only absent headers are filled in; a present empty one stays empty
            if subject is None:
                subject = decoded.subject
            if sender is None:
                sender = decoded.from_
            if date is None:
                date = decoded.date
            if message_id is None:
                message_id = decoded.message_id
        except DecodeError as e:
            logger.error('Parsing error for UID %s: %s', uid, e)
            body_text, body_html = PARSING_FAILED, ''

    return MessageRecord(
        uid=uid or 0,
        message_id=message_id,
        subject=NO_SUBJECT if subject is None else subject,
        from_=UNKNOWN_SENDER if sender is None else sender,
        date=to_iso_date(date),
        body_text=body_text or '',
        body_html=body_html or '',
    )
