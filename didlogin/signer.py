"""
Signer - Cryptographically signs JWT claims using Ed25519 (JWS/JWK).

Every token the service hands out (login requests, credentials,
presentations) is produced here and bound to the service identity's DID.
"""

import json
import time
import uuid
from typing import Dict, Any, Optional

from jwcrypto import jwk, jws
from jwcrypto.common import json_encode, JWException

from didlogin.errors import SigningError


class Signer:
    """
    Signs claim sets as EdDSA JWTs on behalf of one DID.

    Example:
        >>> signer = Signer(private_key='{"kty":"OKP",...}', did='did:key:z6Mk...')
        >>> token = signer.sign({'type': 'sdr', 'tag': 'sess-123'})
    """

    def __init__(self, private_key: str, did: str, default_expiry_seconds: int = 300):
        """
        Initialize the Signer with credentials.

        Args:
            private_key: JWK JSON string containing the Ed25519 private key.
            did: The Decentralized Identifier (DID) of the signer.
            default_expiry_seconds: Token validity period (default: 5 minutes).

        Raises:
            ValueError: If private_key or did is missing or invalid.
        """
        if not private_key:
            raise ValueError("Signer requires 'private_key' (JWK JSON string)")
        if not did:
            raise ValueError("Signer requires 'did' (Decentralized Identifier)")

        self.did = did
        self.default_expiry = default_expiry_seconds

        try:
            self._key = jwk.JWK.from_json(private_key)
        except Exception as e:
            raise ValueError(f"Invalid JWK private key: {e}")

        if self._key["kty"] != "OKP" or self._key.get("crv") != "Ed25519":
            raise ValueError("Key must be an Ed25519 key (OKP with crv=Ed25519)")
        if not self._key.has_private:
            raise ValueError("Invalid JWK private key: no private component")

    def sign(
        self,
        claims: Dict[str, Any],
        expiry_seconds: Optional[int] = None,
        typ: str = "JWT",
    ) -> str:
        """
        Signs a claim set and returns a JWS compact serialization.

        Registered claims (iss, iat, nbf, exp, jti) are filled in; values in
        ``claims`` take precedence except for ``iss``, which is always the
        signer's DID.

        Raises:
            SigningError: If the payload cannot be signed.
        """
        now = int(time.time())
        exp = expiry_seconds if expiry_seconds is not None else self.default_expiry

        payload = {
            "jti": str(uuid.uuid4()),
            "iat": now,
            "nbf": now,
            "exp": now + exp,
        }
        payload.update(claims)
        payload["iss"] = self.did

        protected_header = {
            "alg": "EdDSA",
            "typ": typ,
            "kid": self._key.get("kid") or f"{self.did}#controller",
        }

        try:
            token = jws.JWS(json.dumps(payload, sort_keys=True, separators=(",", ":")))
            token.add_signature(self._key, None, json_encode(protected_header), None)
            return token.serialize(compact=True)
        except (JWException, TypeError, ValueError) as e:
            raise SigningError(f"Failed to sign payload for {self.did}: {e}")

    def get_public_key_jwk(self) -> str:
        """
        Returns the public key in JWK format for verification.
        """
        return self._key.export_public()
