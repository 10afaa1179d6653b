"""Relay error taxonomy.

Every error here is recoverable at the scope of a single connection or a
single request; none of them should take the process down.
"""


class RelayError(Exception):
    """Base class for relay errors."""

    code = "RELAY_ERROR"


class RegistrationError(RelayError):
    """A join attempt was rejected."""

    code = "REGISTRATION_FAILED"


class DuplicateIdentityError(RegistrationError):
    """Another participant already holds the requested identity."""

    code = "DUPLICATE_IDENTITY"

    def __init__(self, identity: str) -> None:
        super().__init__("Gamertag already in use. Please choose a different one.")
        self.identity = identity


class CapacityExceededError(RegistrationError):
    """The registry is at its configured maximum."""

    code = "CAPACITY_EXCEEDED"

    def __init__(self, limit: int) -> None:
        super().__init__("Server at capacity")
        self.limit = limit


class AlreadyRegisteredError(RegistrationError):
    """The connection already joined under some identity."""

    code = "ALREADY_JOINED"

    def __init__(self, identity: str) -> None:
        super().__init__(f"Connection already joined as {identity}")
        self.identity = identity


class ParticipantNotFoundError(RelayError):
    """No registered participant holds the identity."""

    code = "NOT_FOUND"

    def __init__(self, identity: str) -> None:
        super().__init__(f"Participant not found: {identity}")
        self.identity = identity


class RateLimitExceededError(RelayError):
    """Connection exceeded its message budget for the current window."""

    code = "RATE_LIMITED"

    def __init__(self) -> None:
        super().__init__("Rate limit exceeded")


class MalformedMessageError(RelayError):
    """Inbound frame is not a valid envelope for its tag."""

    code = "MALFORMED_MESSAGE"


class UnknownMessageTypeError(MalformedMessageError):
    """Envelope decoded but its tag is not one the relay handles."""

    code = "UNKNOWN_TYPE"

    def __init__(self, message_type: object) -> None:
        super().__init__(f"Unknown message type: {message_type!r}")
        self.message_type = message_type


class SnapshotProcessingError(RelayError):
    """A world snapshot could not be ingested."""

    code = "SNAPSHOT_FAILED"
