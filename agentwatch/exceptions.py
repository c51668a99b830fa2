#  Agent Watch - Custom Exceptions
#
#  Typed exception hierarchy so routes can map pipeline errors to HTTP
#  status codes without pattern-matching on message strings.
#
#  Depends on: (none)
#  Used by:    services/*, db/connection.py, app.py

class AgentWatchError(Exception):
    """Base exception for all pipeline errors."""


class NotFoundError(AgentWatchError):
    """Resource (task, channel, template, report, session) does not exist."""


class InvalidStateError(AgentWatchError):
    """Unrecognized enum value, or operation not allowed in the current state."""


class ValidationError(AgentWatchError):
    """A required field is missing or unusable."""


class ChannelNotFoundError(ValidationError):
    """A rule action references a channel that is missing or disabled."""

    def __init__(self, channel_id: str, reason: str = "not found or disabled"):
        self.channel_id = channel_id
        super().__init__(f"Channel {channel_id} {reason}")


class ChannelDispatchError(AgentWatchError):
    """A single channel send failed."""

    def __init__(self, channel_id: str, cause: Exception | str):
        self.channel_id = channel_id
        self.cause = cause
        super().__init__(f"Dispatch via channel {channel_id} failed: {cause}")


class StoreError(AgentWatchError):
    """Durable store I/O failure."""
