"""Custom exception hierarchy for the EchoWave relay."""


class EchoWaveError(Exception):
    """Base class for all EchoWave-specific errors."""


class EchoWaveConnectionError(EchoWaveError):
    """Raised when the transport cannot be opened or fails while in use.

    Always fatal: the session is closed before this propagates.
    """


class PermissionPendingError(EchoWaveError):
    """Raised when access to the device has not been granted (yet).

    Recoverable, opening can be retried once permission is available.
    """


class FrameError(EchoWaveError):
    """Raised when inbound bytes do not form a valid message."""


class WrongSizeError(FrameError):
    """Raised when a buffer is not exactly one message long."""


class UnknownKindError(FrameError):
    """Raised when a message tag (or reply tag) is not known."""


class ShortBufferError(FrameError):
    """Raised when an RC code payload is shorter than 16 bytes."""


class IntegrityError(EchoWaveError):
    """Raised when a message checksum does not match its content."""


class StateError(EchoWaveError):
    """Raised when an operation is not allowed in the current session state."""


class NotInitializedError(StateError):
    """Raised when there is no open session."""


class AlreadyListeningError(StateError):
    """Raised when a request is issued while the device is in listen mode."""


class NotListeningError(StateError):
    """Raised when listen mode is stopped although it is not active."""
