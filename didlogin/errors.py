"""
Error taxonomy for the DID login service.

Startup-time errors (configuration, endpoint publication) are fatal.
Per-request errors (validation, signing) are surfaced to the HTTP caller
and never crash the process.
"""


class DIDLoginError(Exception):
    """Base class for all service errors."""


class ConfigurationError(DIDLoginError):
    """Required configuration is missing (host, port, session mechanism)."""


class ValidationError(DIDLoginError):
    """An inbound message could not be parsed or verified."""


class SigningError(DIDLoginError):
    """The issuer identity could not sign a payload."""


class ServiceEndpointPublicationError(DIDLoginError):
    """The identity's messaging service endpoint could not be published."""
