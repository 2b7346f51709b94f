"""Error kinds raised by the hub core. None of them is process-fatal."""


class FizHubError(Exception):
    """Base for all hub errors."""

    kind = "error"


class MalformedMessage(FizHubError):
    """Inbound payload could not be decoded into the required fields."""

    kind = "malformed_message"


class WrongPhase(FizHubError):
    """Event arrived outside the phase in which it is valid."""

    kind = "wrong_phase"

    def __init__(self, expected: str, actual: str):
        super().__init__(f"expected phase {expected}, session is in {actual}")
        self.expected = expected
        self.actual = actual


class DuplicateUID(FizHubError):
    """Tap identifier already collected in the current session."""

    kind = "duplicate_uid"

    def __init__(self, uid: str):
        super().__init__(f"uid already collected: {uid}")
        self.uid = uid


class UnknownDevice(FizHubError):
    # Status updates for unknown devices are ignored rather than raised; kept
    # so callers can name the case explicitly.
    kind = "unknown_device"


class ValidationFailure(FizHubError):
    """The validation service rejected the collected identifiers, or could not be reached."""

    kind = "validation_failure"


class RecordingFailure(FizHubError):
    kind = "recording_failure"


class ValidationTransportError(FizHubError):
    """Network or protocol failure talking to the validation service."""

    kind = "validation_transport_error"


class StaleSession(FizHubError):
    """Result requested by a session that has since been reset."""

    kind = "stale_session"

    def __init__(self, requested: int, current: int):
        super().__init__(f"result for session {requested} arrived during session {current}")
        self.requested = requested
        self.current = current
