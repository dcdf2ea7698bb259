"""
Signing actions.

Each supported operation is a variant of ``ActionType`` with its own
argument dataclass and handler. ``ActionHandler.handle_action`` dispatches on
the variant and returns the signed JWT.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union

from didlogin.credentials import build_credential, build_presentation
from didlogin.messages import MessageType
from didlogin.signer import Signer

logger = logging.getLogger(__name__)

CREDENTIAL_VALIDITY_SECONDS = 365 * 86400


class ActionType(str, Enum):
    SIGN_SDR = "sign.sdr"
    SIGN_VC = "sign.w3c.vc"
    SIGN_VP = "sign.w3c.vp"


@dataclass
class ClaimRequest:
    """One claim asked for in a selective disclosure request."""

    claim_type: str
    reason: Optional[str] = None
    essential: bool = False

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"claimType": self.claim_type, "essential": self.essential}
        if self.reason:
            data["reason"] = self.reason
        return data


@dataclass
class SignSdr:
    tag: str
    claims: List[ClaimRequest]
    reply_url: Optional[str] = None
    expiry_seconds: Optional[int] = None
    type: ActionType = field(default=ActionType.SIGN_SDR, init=False)


@dataclass
class SignCredential:
    subject: str
    credential_subject: Dict[str, Any]
    expiry_seconds: Optional[int] = None
    type: ActionType = field(default=ActionType.SIGN_VC, init=False)


@dataclass
class SignPresentation:
    audience: str
    credentials: List[str]
    expiry_seconds: Optional[int] = None
    type: ActionType = field(default=ActionType.SIGN_VP, init=False)


Action = Union[SignSdr, SignCredential, SignPresentation]


class ActionHandler:
    """
    Executes signing actions with the service identity.

    Example:
        >>> actions = ActionHandler(signer)
        >>> jwt = actions.handle_action(SignSdr(tag="sess-123", claims=[ClaimRequest("name")]))
    """

    def __init__(self, signer: Signer):
        self._signer = signer
        self._handlers: Dict[ActionType, Callable[[Any], str]] = {
            ActionType.SIGN_SDR: self._sign_sdr,
            ActionType.SIGN_VC: self._sign_credential,
            ActionType.SIGN_VP: self._sign_presentation,
        }

    @property
    def did(self) -> str:
        return self._signer.did

    def handle_action(self, action: Action) -> str:
        """
        Sign the payload described by ``action``.

        Raises:
            ValueError: If the action type is not supported.
            SigningError: If the payload cannot be signed.
        """
        handler = self._handlers.get(getattr(action, "type", None))
        if handler is None:
            raise ValueError(f"Unsupported action: {action!r}")

        token = handler(action)
        logger.debug(f"Signed {action.type.value} as {self._signer.did}")
        return token

    def _sign_sdr(self, action: SignSdr) -> str:
        claims: Dict[str, Any] = {
            "type": MessageType.SDR.value,
            "tag": action.tag,
            "claims": [claim.to_dict() for claim in action.claims],
        }
        if action.reply_url:
            claims["replyUrl"] = action.reply_url
        return self._signer.sign(claims, expiry_seconds=action.expiry_seconds)

    def _sign_credential(self, action: SignCredential) -> str:
        claims = build_credential(action.subject, action.credential_subject)
        return self._signer.sign(claims, expiry_seconds=action.expiry_seconds or CREDENTIAL_VALIDITY_SECONDS)

    def _sign_presentation(self, action: SignPresentation) -> str:
        claims = build_presentation(action.audience, action.credentials)
        return self._signer.sign(claims, expiry_seconds=action.expiry_seconds or CREDENTIAL_VALIDITY_SECONDS)
