"""
W3C Verifiable Credential and Presentation payloads.

These build the ``vc`` / ``vp`` claim sets of the JWT encoding; signing
happens in ``didlogin.actions``.
"""

from typing import Any, Dict, List, Optional

CREDENTIALS_CONTEXT = "https://www.w3.org/2018/credentials/v1"


def build_credential(
    subject: str,
    credential_subject: Dict[str, Any],
    types: Optional[List[str]] = None,
) -> Dict[str, Any]:
    """Claims of a VC JWT about ``subject``."""
    if not subject:
        raise ValueError("Credential requires a subject DID")
    if not credential_subject:
        raise ValueError("Credential requires at least one claim")

    return {
        "sub": subject,
        "vc": {
            "@context": [CREDENTIALS_CONTEXT],
            "type": ["VerifiableCredential"] + list(types or []),
            "credentialSubject": dict(credential_subject),
        },
    }


def build_presentation(audience: str, credentials: List[str]) -> Dict[str, Any]:
    """Claims of a VP JWT presenting signed credentials to ``audience``."""
    if not audience:
        raise ValueError("Presentation requires an audience DID")
    if not credentials:
        raise ValueError("Presentation requires at least one credential")

    return {
        "aud": audience,
        "vp": {
            "@context": [CREDENTIALS_CONTEXT],
            "type": ["VerifiablePresentation"],
            "verifiableCredential": list(credentials),
        },
    }
