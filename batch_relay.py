"""
Run one relay request: open a session, search, turn each hit into a
MessageRecord, close the session.

Messages are processed one at a time on purpose; rapid pipelined part
fetches get connections reset by some servers.
"""
from typing import List, Optional, Sequence, Tuple
import logging

from body_resolver import SKIPPED_HTML_NOTE, ResolutionState, resolve_body
from imap_ingest import ImapSession
from normalizer import normalize
from relay_errors import ConfigError, ItemProcessingError, RelayError, TransportError
from relay_models import FetchRequest, MessageRecord
from relay_settings import Settings

logger = logging.getLogger(__name__)

DEFAULT_CRITERIA = [['ALL']]


def _build_record(session, item, fetch_bodies: bool, settings: Settings) -> MessageRecord:
    try:
        uid = item.uid or 0
        headers = item.headers or {}
        resolution = resolve_body(
            session, item, item.structure, fetch_bodies,
            timeout_ms=settings.part_timeout_ms,
            fallback_part_id=settings.fallback_part_id,
        )
        html_note = SKIPPED_HTML_NOTE if resolution.state is ResolutionState.SKIPPED else ''
        return normalize(headers, resolution.content, note=resolution.note, uid=uid, html_note=html_note)
    except Exception as e:
        raise ItemProcessingError(f"UID {getattr(item, 'uid', '?')}: {e}") from e


def process_batch(session, search_results: Sequence, limit: Optional[int] = None,
                  fetch_bodies: bool = True, settings: Optional[Settings] = None) -> List[MessageRecord]:
    """Newest-first records for `search_results`, at most `limit` of them.

    A message that fails for any reason is logged and left out; this never raises.
    """
    settings = settings or Settings()
    items = list(reversed(list(search_results)))
    if limit and len(items) > limit:
        items = items[:limit]

    logger.info('Processing %s messages...', len(items))
    records: List[MessageRecord] = []
    for item in items:
        try:
            records.append(_build_record(session, item, fetch_bodies, settings))
        except ItemProcessingError as e:
            logger.exception('Skipping message %s', e)
    return records


def _check_config(request: FetchRequest):
    imap = request.config.imap if request.config else None
    if imap is None:
        raise ConfigError('Missing IMAP configuration')
    missing = [name for name in ('host', 'user', 'password') if not getattr(imap, name)]
    if missing:
        raise ConfigError(f"Missing IMAP configuration: {', '.join(missing)}")
    return imap


def relay(request: FetchRequest, settings: Settings, connect=ImapSession.connect) -> Tuple[List[MessageRecord], int]:
    """Serve one fetch request end to end. Returns (records, number of search hits)."""
    imap = _check_config(request)
    fetch_bodies = request.should_fetch_bodies
    mailbox = request.mailbox or settings.default_mailbox

    logger.info('Connecting to %s:%s...', imap.host, imap.port)
    try:
        session = connect(imap, settings)
    except RelayError:
        raise
    except Exception as e:
        raise TransportError(f'IMAP connect failed: {e}') from e
    try:
        try:
            session.open_mailbox(mailbox)
            logger.info('Searching %s... (bodies: %s)', mailbox, fetch_bodies)
            results = session.search(request.search_criteria or DEFAULT_CRITERIA, fetch_structure=fetch_bodies)
        except RelayError:
            raise
        except Exception as e:
            raise TransportError(str(e) or e.__class__.__name__) from e
        records = process_batch(session, results, request.limit, fetch_bodies, settings)
    finally:
        try:
            session.close()
        except Exception as e:
            logger.debug('Ignoring error while closing session: %s', e)
    logger.info('Returning %s of %s messages', len(records), len(results))
    return records, len(results)
