"""
DID Login - Web session login through DID wallets.

A visitor's session is authenticated when their wallet answers a signed
Selective Disclosure Request with a Verifiable Presentation.
"""

__version__ = "0.4.0"

# Core signing and identity
from .signer import Signer
from .keys import generate_identity, KeyPair
from .errors import (
    DIDLoginError,
    ConfigurationError,
    ValidationError,
    SigningError,
    ServiceEndpointPublicationError,
)


# Web layer (lazy imports to avoid requiring FastAPI for library use)
def __getattr__(name):
    """Lazy loading of the web service."""
    if name in ("create_app", "Agent"):
        from . import server

        return getattr(server, name)
    elif name in ("Settings", "load_settings"):
        from . import config

        return getattr(config, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = [
    "Signer",
    "generate_identity",
    "KeyPair",
    "DIDLoginError",
    "ConfigurationError",
    "ValidationError",
    "SigningError",
    "ServiceEndpointPublicationError",
    "create_app",
    "Agent",
    "Settings",
    "load_settings",
]
