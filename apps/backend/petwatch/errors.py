from __future__ import annotations


class PetwatchError(Exception):
    """Base class for every failure raised by the detection engine."""


class ConfigurationError(PetwatchError, ValueError):
    """A setting or analyzer config was rejected; the previous value is kept."""


class DeviceUnavailable(PetwatchError):
    """A camera or microphone could not be opened."""


class StorageError(PetwatchError):
    """Persisting, reading or updating a stored clip failed."""


class ChannelError(PetwatchError):
    """The event channel could not deliver a message."""


class MessageFormatError(PetwatchError, ValueError):
    """An inbound channel payload is not a valid event or settings message."""


class CaptureError(PetwatchError):
    """An evidence capture did not produce a clip."""


class NotBufferingError(CaptureError):
    pass


class CaptureAborted(CaptureError):
    pass
