"""
Exception types raised by the follow-up engine.
"""


class FollowupError(Exception):
    """Base class for follow-up engine errors"""


class UnknownSequenceError(FollowupError):
    """No sequence is configured for a demo type"""


class InvalidTransitionError(FollowupError):
    """A demo status change that the state machine does not allow"""

    def __init__(self, current, requested):
        self.current = current
        self.requested = requested
        super().__init__(f"Cannot move demo from {current.value} to {requested.value}")


class TransportError(FollowupError):
    """Message provider failed to accept a message. Retryable."""


class AlreadyProcessedError(TransportError):
    """Provider has already accepted a message with this idempotency key"""


class WebhookSignatureError(FollowupError):
    """Inbound webhook signature is missing or does not match"""
