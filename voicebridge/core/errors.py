"""Bridge exceptions."""


class BridgeError(Exception):
    """Base class for call bridge errors."""


class ConfigurationError(BridgeError):
    """A collaborator is missing a credential or setting it needs."""


class RealtimeConnectionError(BridgeError):
    """The realtime AI connection could not be opened or was lost."""
