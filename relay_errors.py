"""
Error taxonomy for the relay.

Only ConfigError and TransportError ever reach the HTTP caller. The others
are recovered inside the pipeline and exist so failures can be logged and
tested by kind.
"""


class RelayError(Exception):
    pass


class ConfigError(RelayError):
    """Missing or invalid connection parameters. Raised before any session is opened."""


class TransportError(RelayError):
    """Connect, mailbox or search failure. Fatal for the whole batch."""


class PartFetchError(RelayError):
    """A single part retrieval failed or timed out."""


class DecodeError(RelayError):
    """MIME parsing failed for one message."""


class ItemProcessingError(RelayError):
    """Anything else that goes wrong while building one record."""
