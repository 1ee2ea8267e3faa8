"""MIME decoding for fetched content, built on the stdlib email package."""
from dataclasses import dataclass
from email import message_from_bytes, message_from_string
from email.policy import default as email_policy
from typing import Optional
import html
import re

from relay_errors import DecodeError

_URL = re.compile(r'(https?://[^\s<>"]+)')
_BLANK_LINE = re.compile(r'\r?\n[ \t]*\r?\n')


@dataclass(frozen=True)
class DecodedContent:
    text: str = ''
    html: str = ''
    subject: Optional[str] = None
    from_: Optional[str] = None
    date: Optional[str] = None
    message_id: Optional[str] = None


def _content(part) -> str:
    try:
        return part.get_content()
    except LookupError:
        # unknown charset
        payload = part.get_payload(decode=True) or b''
        return payload.decode('utf-8', errors='replace')


def _header(msg, name) -> Optional[str]:
    value = msg.get(name)
    if value is None:
        return None
    return str(value).strip() or None


def parse(raw) -> DecodedContent:
    """Decode a MIME entity into its text and HTML bodies plus any headers it carries.

    Raises DecodeError if the content cannot be parsed.
    """
    if raw is None:
        raise DecodeError('nothing to decode')
    try:
        if isinstance(raw, str):
            msg = message_from_string(raw, policy=email_policy)
        else:
            msg = message_from_bytes(bytes(raw), policy=email_policy)
        plain = msg.get_body(preferencelist=('plain',))
        rich = msg.get_body(preferencelist=('html',))
        return DecodedContent(
            text=_content(plain) if plain is not None else '',
            html=_content(rich) if rich is not None else '',
            subject=_header(msg, 'subject'),
            from_=_header(msg, 'from'),
            date=_header(msg, 'date'),
            message_id=_header(msg, 'message-id'),
        )
    except DecodeError:
        raise
    except Exception as e:
        raise DecodeError(f'{e.__class__.__name__}: {e}') from e


def _line_to_html(line: str) -> str:
    return _URL.sub(r'<a href="\1">\1</a>', html.escape(line, quote=False))


def text_to_html(text: str) -> str:
    """Render plain text as simple HTML: paragraphs, line breaks and clickable links."""
    if not text or not text.strip():
        return ''
    paragraphs = []
    for para in _BLANK_LINE.split(text.strip()):
        lines = [_line_to_html(line) for line in para.splitlines()]
        paragraphs.append('<p>' + '<br/>'.join(lines) + '</p>')
    return '\n'.join(paragraphs)
