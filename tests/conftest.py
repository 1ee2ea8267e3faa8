import time

import pytest

from part_fetch import SerialWorker
from part_tree import ContainerPart, LeafPart
from relay_errors import PartFetchError

HTML_PART = b'Content-Type: text/html; charset="utf-8"\r\n\r\n<p>Hello <b>there</b></p>'
PLAIN_PART = b'Content-Type: text/plain; charset="utf-8"\r\n\r\nHello there'


class FakeSession(SerialWorker):
    """In-memory stand-in for ImapSession. Parts are looked up by part id."""

    def __init__(self, parts=None, delays=None, errors=None, results=None, gates=None):
        super().__init__()
        self.parts = dict(parts or {})
        self.delays = dict(delays or {})
        self.gates = dict(gates or {})
        self.errors = dict(errors or {})
        self.results = list(results or [])
        self.calls = []
        self.mailbox = None
        self.criteria = None
        self.closed = False

    def fetch_part_content(self, item, part):
        self.calls.append((item.uid, part.part_id))
        gate = self.gates.get(part.part_id)
        if gate is not None:
            gate.wait(5)
        delay = self.delays.get(part.part_id)
        if delay:
            time.sleep(delay)
        if part.part_id in self.errors:
            raise self.errors[part.part_id]
        if part.part_id not in self.parts:
            raise PartFetchError(f'no part {part.part_id}')
        return self.parts[part.part_id]

    def open_mailbox(self, name='INBOX'):
        self.mailbox = name
        return len(self.results)

    def search(self, criteria=None, fetch_structure=True):
        self.criteria = criteria
        return list(self.results)

    def close(self):
        self.stop_worker()
        self.closed = True


@pytest.fixture
def make_session():
    sessions = []

    def factory(**kwargs):
        s = FakeSession(**kwargs)
        sessions.append(s)
        return s

    yield factory
    for s in sessions:
        s.stop_worker()


@pytest.fixture
def alternative():
    return ContainerPart(
        part_id=None,
        subtype='alternative',
        children=[
            LeafPart(part_id='1', type='text', subtype='plain', params={'charset': 'utf-8'}),
            LeafPart(part_id='2', type='text', subtype='html', params={'charset': 'utf-8'}),
        ],
    )
