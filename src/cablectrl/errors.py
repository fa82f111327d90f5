"""
Exception hierarchy for cable trainer control.
"""


class CableCtrlError(Exception):
    """Base class for all library errors."""


class ValidationError(CableCtrlError, ValueError):
    """Caller-supplied parameter is outside its documented contract."""


class MalformedPayloadError(CableCtrlError, ValueError):
    """Device sent a payload that cannot be decoded."""


class TransportError(CableCtrlError):
    """A GATT operation failed."""


class GattTimeoutError(TransportError, TimeoutError):
    """A connection attempt or GATT transaction exceeded its bounded wait."""


class DisconnectedError(TransportError):
    """Operation attempted, queued or in flight while the link was down."""


class SessionError(CableCtrlError):
    """Session action not valid in the current controller state."""
