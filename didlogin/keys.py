"""
Ed25519 identity generation and did:key encoding.
"""

import json
from dataclasses import dataclass

import base58
from jwcrypto import jwk
from jwcrypto.common import base64url_decode, base64url_encode

# Ed25519 multicodec prefix is 0xED01
ED25519_MULTICODEC = bytes([0xED, 0x01])
DID_KEY_PREFIX = "did:key:z"


@dataclass
class KeyPair:
    """An Ed25519 identity: JWK strings plus the derived DID."""

    private_key_jwk: str
    public_key_jwk: str
    did: str


def generate_identity() -> KeyPair:
    """
    Generates a fresh Ed25519 keypair bound to a did:key identifier.
    """
    key = jwk.JWK.generate(kty="OKP", crv="Ed25519")
    public_key = key.export_public()
    did = did_key_from_public_jwk(public_key)

    return KeyPair(
        private_key_jwk=key.export_private(),
        public_key_jwk=public_key,
        did=did,
    )


def did_key_from_public_jwk(public_key_jwk: str) -> str:
    """Derive the did:key identifier of an Ed25519 public JWK."""
    data = json.loads(public_key_jwk)
    if data.get("kty") != "OKP" or data.get("crv") != "Ed25519":
        raise ValueError("did:key encoding requires an Ed25519 key")

    raw = base64url_decode(data["x"])
    return DID_KEY_PREFIX + base58.b58encode(ED25519_MULTICODEC + raw).decode("ascii")


def public_jwk_from_did_key(did: str) -> str:
    """
    Decode a did:key identifier back into an Ed25519 public JWK.

    Raises:
        ValueError: If the DID is not an Ed25519 did:key.
    """
    if not did.startswith(DID_KEY_PREFIX):
        raise ValueError(f"Not a did:key identifier: {did}")

    try:
        decoded = base58.b58decode(did[len(DID_KEY_PREFIX):])
    except ValueError as e:
        raise ValueError(f"Invalid did:key encoding: {e}")

    if decoded[:2] != ED25519_MULTICODEC or len(decoded) != 34:
        raise ValueError(f"Unsupported did:key type: {did}")

    return json.dumps(
        {"kty": "OKP", "crv": "Ed25519", "x": base64url_encode(decoded[2:])}
    )
