"""Domain exceptions raised by services and mapped to HTTP responses in main."""


class LeadRelayError(Exception):
    """Base class for errors that carry a client-facing message."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotAuthenticatedError(LeadRelayError):
    status_code = 401


class PermissionDeniedError(LeadRelayError):
    status_code = 403


class NotFoundError(LeadRelayError):
    status_code = 404


class ValidationFailedError(LeadRelayError):
    status_code = 400


class DownstreamError(LeadRelayError):
    """A third-party provider (Twilio, Stripe, Google, ElevenLabs) rejected a call."""

    status_code = 400


class ConfigurationError(RuntimeError):
    """A required secret or setting is missing."""
