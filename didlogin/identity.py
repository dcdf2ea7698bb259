"""
Service identity.

The service signs login requests and credentials with one Ed25519 identity.
Its DID document advertises the messaging endpoint wallets reply to; the
login handshake cannot work until that endpoint has been published.
"""

import logging
import urllib.parse
from dataclasses import dataclass

from didlogin.config import Settings
from didlogin.errors import ConfigurationError, ServiceEndpointPublicationError
from didlogin.keys import generate_identity
from didlogin.resolver import DIDDocument, DIDResolver, ServiceEndpoint
from didlogin.signer import Signer

logger = logging.getLogger(__name__)

MESSAGING_SERVICE_TYPE = "Messaging"


@dataclass
class ServiceIdentity:
    """The service's signing identity and its DID document."""

    signer: Signer
    document: DIDDocument

    @property
    def did(self) -> str:
        return self.signer.did

    @property
    def service_endpoint(self):
        svc = self.document.get_service(MESSAGING_SERVICE_TYPE)
        return svc.service_endpoint if svc else None


def load_identity(settings: Settings) -> ServiceIdentity:
    """
    Load the configured identity, or generate an ephemeral did:key one.

    Raises:
        ConfigurationError: If only one of the private key and the DID is set,
            or the key is invalid.
    """
    if settings.private_key or settings.did:
        if not (settings.private_key and settings.did):
            raise ConfigurationError(
                "DIDLOGIN_PRIVATE_KEY and DIDLOGIN_DID must be set together"
            )
        try:
            signer = Signer(private_key=settings.private_key, did=settings.did)
        except ValueError as e:
            raise ConfigurationError(f"Invalid service identity: {e}")
    else:
        keypair = generate_identity()
        signer = Signer(private_key=keypair.private_key_jwk, did=keypair.did)
        logger.warning(f"No identity configured, generated ephemeral {keypair.did}")

    document = DIDDocument.for_public_key(signer.did, signer.get_public_key_jwk())
    return ServiceIdentity(signer=signer, document=document)


def publish_service_endpoint(
    identity: ServiceIdentity, endpoint: str, resolver: DIDResolver
) -> ServiceEndpoint:
    """
    Advertise ``endpoint`` as the identity's messaging service.

    The updated document is registered with ``resolver`` and served at
    ``/.well-known/did.json``.

    Raises:
        ServiceEndpointPublicationError: If the endpoint is not an absolute
            http(s) URL.
    """
    parsed = urllib.parse.urlparse(endpoint or "")
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ServiceEndpointPublicationError(
            f"Service endpoint not published for {identity.did}: "
            f"{endpoint!r} is not an absolute http(s) URL"
        )

    service = ServiceEndpoint(
        id=f"{identity.did}#messaging",
        type=MESSAGING_SERVICE_TYPE,
        service_endpoint=endpoint,
        description="DID login messaging endpoint",
    )
    identity.document.services = [
        svc for svc in identity.document.services if svc.type != MESSAGING_SERVICE_TYPE
    ] + [service]

    resolver.register(identity.document)
    logger.info(f"Published messaging endpoint {endpoint} for {identity.did}")
    return service
