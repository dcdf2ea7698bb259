# didlogin/config.py
"""
Centralized configuration for the DID login service.

Values are read from environment variables. ``HOST`` and ``PORT`` have no
default: the login handshake publishes ``HOST`` as the wallet's reply
address, so the service refuses to start without them.

Usage:
    from didlogin.config import load_settings

    settings = load_settings()
    print(settings.messaging_endpoint)

Environment Variables:
    HOST: Public base URL of the service (e.g. https://login.example.com)
    PORT: Listening port
    DIDLOGIN_PRIVATE_KEY: Ed25519 JWK JSON of the service identity (optional)
    DIDLOGIN_DID: DID of the service identity (required with the key)
    DIDLOGIN_SDR_TTL: Validity of an issued login request in seconds (default: 600)
    DIDLOGIN_SESSION_COOKIE: Session cookie name (default: didlogin_sid)
    DIDLOGIN_SESSION_TTL: Session lifetime in seconds (default: 86400)
    DIDLOGIN_LOG_LEVEL: Logging level (default: INFO)
"""

import os
from dataclasses import dataclass
from typing import Final, Mapping, Optional

from didlogin.errors import ConfigurationError

# =============================================================================
# Defaults
# =============================================================================

MESSAGING_PATH: Final[str] = "/handle-message"

SDR_VALIDITY_SECONDS: Final[int] = int(os.getenv("DIDLOGIN_SDR_TTL", "600"))

SESSION_COOKIE: Final[str] = os.getenv("DIDLOGIN_SESSION_COOKIE", "didlogin_sid")

SESSION_TTL_SECONDS: Final[int] = int(os.getenv("DIDLOGIN_SESSION_TTL", "86400"))

LOG_LEVEL: Final[str] = os.getenv("DIDLOGIN_LOG_LEVEL", "INFO")


# =============================================================================
# Settings
# =============================================================================


@dataclass
class Settings:
    """Runtime settings of one service instance."""

    host: str
    port: int
    private_key: Optional[str] = None
    did: Optional[str] = None
    sdr_validity_seconds: int = SDR_VALIDITY_SECONDS
    session_cookie: str = SESSION_COOKIE
    session_ttl_seconds: int = SESSION_TTL_SECONDS
    log_level: str = LOG_LEVEL

    @property
    def messaging_endpoint(self) -> str:
        """Absolute URL wallets POST their responses to."""
        return self.host.rstrip("/") + MESSAGING_PATH


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    """
    Build Settings from the environment.

    Args:
        environ: Mapping to read from (defaults to os.environ).

    Returns:
        Populated Settings.

    Raises:
        ConfigurationError: If HOST or PORT is missing or PORT is not an integer.
    """
    env = os.environ if environ is None else environ

    host = env.get("HOST")
    if not host:
        raise ConfigurationError("Environment variable HOST not set")

    port = env.get("PORT")
    if not port:
        raise ConfigurationError("Environment variable PORT not set")
    try:
        port_number = int(port)
    except ValueError:
        raise ConfigurationError(f"Environment variable PORT is not a number: {port!r}")

    return Settings(
        host=host,
        port=port_number,
        private_key=env.get("DIDLOGIN_PRIVATE_KEY") or None,
        did=env.get("DIDLOGIN_DID") or None,
        sdr_validity_seconds=int(env.get("DIDLOGIN_SDR_TTL", SDR_VALIDITY_SECONDS)),
        session_cookie=env.get("DIDLOGIN_SESSION_COOKIE", SESSION_COOKIE),
        session_ttl_seconds=int(env.get("DIDLOGIN_SESSION_TTL", SESSION_TTL_SECONDS)),
        log_level=env.get("DIDLOGIN_LOG_LEVEL", LOG_LEVEL),
    )
