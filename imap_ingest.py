"""
Read-only IMAP access for the relay. One ImapSession per request, never shared.

- ImapSession.connect(config, settings) -> session
- session.open_mailbox(name)
- session.search(criteria, fetch_structure) -> [SearchResultItem]
- session.fetch_part_content(item, part) -> bytes
- session.close()

The protocol side is IMAPClient; headers are decoded with Python's email
package. Mailboxes are selected read-only and all fetches use BODY.PEEK, so
nothing is marked seen.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from email.header import decode_header
from email.parser import BytesHeaderParser
from email.policy import compat32
from typing import Any, Dict, List, Optional

from imapclient import IMAPClient

from bodystructure import parse_bodystructure
from part_fetch import SerialWorker
from part_tree import LeafPart, PartDescriptor
from relay_errors import PartFetchError, TransportError

logger = logging.getLogger(__name__)

_DATE_KEYS = {'SINCE', 'BEFORE', 'ON', 'SENTSINCE', 'SENTBEFORE', 'SENTON'}
HEADER_ITEM = b'BODY[HEADER]'
STRUCTURE_ITEM = b'BODYSTRUCTURE'


def _decode_header(hdr):
    if hdr is None:
        return ''
    parts = decode_header(hdr)
    out = ''
    for s, enc in parts:
        if isinstance(s, bytes):
            try:
                out += s.decode(enc or 'utf-8')
            except (LookupError, UnicodeDecodeError):
                out += s.decode('utf-8', errors='ignore')
        else:
            out += s
    return out


def parse_header_block(raw) -> Dict[str, List[str]]:
    """Header name (lower-case) -> decoded values, in order of appearance."""
    if not raw:
        return {}
    if isinstance(raw, str):
        raw = raw.encode('utf-8', errors='replace')
    msg = BytesHeaderParser(policy=compat32).parsebytes(raw)
    headers: Dict[str, List[str]] = {}
    for name, value in msg.items():
        headers.setdefault(name.lower(), []).append(_decode_header(value).strip())
    return headers


@dataclass
class SearchResultItem:
    uid: int = 0
    headers: Dict[str, List[str]] = field(default_factory=dict)
    structure: Optional[PartDescriptor] = None




def _date_arg(value):
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.replace('Z', '+00:00'))
        except ValueError:
            return value
    if isinstance(value, datetime):
        return value.date()
    return value


def _criterion(c) -> List[Any]:
    if isinstance(c, str):
        if c.startswith('!'):
            return ['NOT', c[1:].upper()]
        return [c.upper()]
    if not isinstance(c, (list, tuple)) or not c:
        raise ValueError(f'Unsupported search criterion: {c!r}')
    key = str(c[0]).upper()
    args = list(c[1:])
    if key == 'OR':
        if len(args) != 2:
            raise ValueError('OR takes exactly two criteria')
        return ['OR', _group(args[0]), _group(args[1])]
    if key.startswith('!'):
        return ['NOT', _criterion([key[1:]] + args)]
    if key in _DATE_KEYS:
        return [key] + [_date_arg(a) for a in args]
    if key == 'UID':
        return [key] + [','.join(str(u) for u in a) if isinstance(a, (list, tuple)) else str(a) for a in args]
    return [key] + [a if isinstance(a, int) else str(a) for a in args]


def _group(criteria) -> List[Any]:
    # an OR operand: one criterion, or a list of them
    if isinstance(criteria, str) or (isinstance(criteria, (list, tuple)) and criteria and isinstance(criteria[0], str)):
        return _criterion(criteria)
    if not isinstance(criteria, (list, tuple)) or not criteria:
        raise ValueError(f'Unsupported search criterion: {criteria!r}')
    terms: List[Any] = []
    for c in criteria:
        terms.extend(_criterion(c))
    return terms


def search_criteria(criteria: Optional[List[Any]] = None) -> List[Any]:
    """Turn JSON search criteria into IMAPClient.search() criteria.

    Criteria are a list whose entries are either a bare key ("UNSEEN"), a
    key with arguments (["SINCE", "2024-05-01"], ["HEADER", "SUBJECT", "x"]),
    or ["OR", a, b]. A leading "!" negates. Nothing given means ALL.
    IMAPClient does the quoting, date formatting and parenthesizing of
    nested lists.
    """
    if not criteria:
        return ['ALL']
    terms: List[Any] = []
    for c in criteria:
        terms.extend(_criterion(c))
    return terms or ['ALL']


def _is_ascii(terms) -> bool:
    for t in terms:
        if isinstance(t, (list, tuple)):
            if not _is_ascii(t):
                return False
        elif isinstance(t, str) and not t.isascii():
            return False
    return True


def _is_section_number(section: str) -> bool:
    return all(s.isdigit() for s in section.split('.'))


def _mime_header_for(part: LeafPart) -> bytes:
    lines = [f'Content-Type: {part.type}/{part.subtype}; charset="{part.charset or "utf-8"}"']
    if part.encoding:
        lines.append(f'Content-Transfer-Encoding: {part.encoding}')
    return '\r\n'.join(lines).encode('ascii', errors='replace')


class ImapSession(SerialWorker):
    def __init__(self, client, search_chunk_size: int = 200):
        super().__init__()
        self.client = client
        self.search_chunk_size = search_chunk_size

    @classmethod
    def connect(cls, config, settings) -> 'ImapSession':
        timeout = config.auth_timeout / 1000.0 if config.auth_timeout else None
        try:
            client = IMAPClient(config.host, port=config.port, ssl=config.tls, timeout=timeout)
        except (IMAPClient.Error, OSError) as e:
            raise TransportError(f'IMAP connect to {config.host}:{config.port} failed: {e}') from e
        try:
            client.login(config.user, config.password)
            # the timeout only bounds connect and login
            client.socket().settimeout(None)
        except (IMAPClient.Error, OSError) as e:
            try:
                client.shutdown()
            except OSError:
                pass
            raise TransportError(f'IMAP login failed: {e}') from e
        return cls(client, search_chunk_size=settings.search_chunk_size)

    def open_mailbox(self, name: str = 'INBOX') -> int:
        try:
            info = self.client.select_folder(name, readonly=True)
        except (IMAPClient.Error, OSError) as e:
            raise TransportError(f'Cannot open mailbox {name}: {e}') from e
        try:
            return int(info.get(b'EXISTS', 0))
        except (AttributeError, TypeError, ValueError):
            return 0

    def search(self, criteria=None, fetch_structure: bool = True) -> List[SearchResultItem]:
        """UIDs matching `criteria` with their header block, oldest first."""
        try:
            query = search_criteria(criteria)
        except ValueError as e:
            raise TransportError(f'Invalid search criteria: {e}') from e
        wanted = ['BODY.PEEK[HEADER]', 'BODYSTRUCTURE'] if fetch_structure else ['BODY.PEEK[HEADER]']
        try:
            uids = sorted(set(self.client.search(query, charset=None if _is_ascii(query) else 'UTF-8')))
            found: Dict[int, SearchResultItem] = {}
            for i in range(0, len(uids), self.search_chunk_size):
                chunk = uids[i:i + self.search_chunk_size]
                for uid, data in self.client.fetch(chunk, wanted).items():
                    found[uid] = self._to_item(uid, data)
        except (IMAPClient.Error, OSError) as e:
            raise TransportError(f'IMAP search failed: {e}') from e
        return [found[u] for u in uids if u in found]

    @staticmethod
    def _to_item(uid, data: Dict[bytes, Any]) -> SearchResultItem:
        structure = None
        if STRUCTURE_ITEM in data:
            structure = parse_bodystructure(data[STRUCTURE_ITEM])
        return SearchResultItem(uid=int(uid), headers=parse_header_block(data.get(HEADER_ITEM)), structure=structure)

    def fetch_part_content(self, item: SearchResultItem, part: LeafPart) -> bytes:
        """The part as a standalone MIME entity: its MIME header, a blank line, its raw body."""
        section = part.part_id
        if _is_section_number(section):
            wanted = [f'BODY.PEEK[{section}.MIME]', f'BODY.PEEK[{section}]']
        else:
            wanted = [f'BODY.PEEK[{section}]']
        try:
            response = self.client.fetch([item.uid], wanted)
        except IMAPClient.Error as e:
            raise PartFetchError(f'FETCH {section} failed for UID {item.uid}: {e}') from e

        data = response.get(item.uid) or {}
        mime_bytes = data.get(f'BODY[{section}.MIME]'.encode('ascii'))
        body_bytes = data.get(f'BODY[{section}]'.encode('ascii'))
        if body_bytes is None:
            raise PartFetchError(f'No data for part {section} of UID {item.uid}')
        if not mime_bytes or b':' not in mime_bytes:
            mime_bytes = _mime_header_for(part)
        return mime_bytes.rstrip(b'\r\n') + b'\r\n\r\n' + body_bytes

    def close(self) -> None:
        busy = self.stop_worker()
        try:
            if busy:
                # a timed-out fetch still owns the socket
                self.client.shutdown()
            else:
                self.client.logout()
        except Exception as e:
            logger.debug('Ignoring error while closing IMAP session: %s', e)
