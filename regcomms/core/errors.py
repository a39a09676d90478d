"""Error taxonomy for the communication engine.

"No matching rule" and "no severity policy" are deliberately absent:
they mean no escalation is required and are reported as ``None``.
"""


class RegCommsError(Exception):
    """Base class for engine errors."""


class NotFoundError(RegCommsError):
    """A referenced incident, stakeholder, rule, path or record does not exist."""

    def __init__(self, entity: str, identifier: object):
        self.entity = entity
        self.identifier = identifier
        super().__init__(f"{entity} not found: {identifier}")


class TransportFailure(RegCommsError):
    """A channel delivery failed.

    Raised only to the caller of a single-recipient send; bulk and
    escalation callers record the failure on the recipient and continue.
    """

    def __init__(self, channel: str, reason: str, communication_id: object = None):
        self.channel = channel
        self.reason = reason
        self.communication_id = communication_id
        super().__init__(f"{channel} delivery failed: {reason}")


class ConcurrencyConflictError(RegCommsError):
    """An optimistic write lost a race against a newer version of the row."""

    def __init__(self, entity: str, identifier: object):
        self.entity = entity
        self.identifier = identifier
        super().__init__(f"Concurrent update of {entity} {identifier}")


class InvalidStateTransitionError(RegCommsError):
    """A forward-only lifecycle was asked to move backwards."""
