"""
Choose and fetch the displayable body of one message.

PRIMARY: flatten the structure, pick the best text part, fetch it once.
FALLBACK: if nothing was picked, or the primary fetch failed or came back
empty, fetch the fixed fallback part once.
Otherwise the message is unresolved and carries a placeholder note.
"""
from enum import Enum
from typing import NamedTuple, Optional
import logging

from part_fetch import DEFAULT_TIMEOUT_MS, FetchError, Success, Timeout, fetch_part
from part_tree import LeafPart, flatten, select_best_part

logger = logging.getLogger(__name__)

DEFAULT_FALLBACK_PART_ID = '1'
UNAVAILABLE_NOTE = '[Content could not be fetched automatically. Please check mail server.]'
SKIPPED_TEXT_NOTE = '[No Text Body]'
SKIPPED_HTML_NOTE = '(No HTML)'


class ResolutionState(str, Enum):
    SKIPPED = 'skipped'
    STRUCTURE = 'structure'
    FALLBACK = 'fallback'
    UNRESOLVED = 'unresolved'


class Resolution(NamedTuple):
    content: Optional[bytes]
    state: ResolutionState
    note: str = ''


def fallback_part(part_id: str = DEFAULT_FALLBACK_PART_ID) -> LeafPart:
    return LeafPart(part_id=part_id, type='text', subtype='plain')


def _describe(outcome) -> str:
    if isinstance(outcome, Timeout):
        return 'Body fetch timeout'
    if isinstance(outcome, FetchError):
        return outcome.reason
    return 'empty content'


def resolve_body(session, item, structure, fetch_bodies: bool = True,
                 timeout_ms: int = DEFAULT_TIMEOUT_MS,
                 fallback_part_id: str = DEFAULT_FALLBACK_PART_ID) -> Resolution:
    if not fetch_bodies:
        return Resolution(None, ResolutionState.SKIPPED, SKIPPED_TEXT_NOTE)

    uid = getattr(item, 'uid', 0)
    best = select_best_part(flatten(structure))
    if best is not None and best.part_id:
        outcome = fetch_part(session, item, best, timeout_ms)
        if isinstance(outcome, Success) and outcome.content:
            return Resolution(outcome.content, ResolutionState.STRUCTURE)
        logger.warning('Failed to fetch part %s for UID %s: %s', best.part_id, uid, _describe(outcome))

    outcome = fetch_part(session, item, fallback_part(fallback_part_id), timeout_ms)
    if isinstance(outcome, Success) and outcome.content:
        return Resolution(outcome.content, ResolutionState.FALLBACK)
    logger.warning('Failed to fetch fallback part %s for UID %s: %s', fallback_part_id, uid, _describe(outcome))
    return Resolution(None, ResolutionState.UNRESOLVED, UNAVAILABLE_NOTE)
