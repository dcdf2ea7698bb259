"""
Login request issuance.

A login request is a Selective Disclosure Request (SDR) tagged with the
visitor's session id. The wallet echoes the tag back on its presentation,
which is how the login listener finds the waiting session.
"""

import time
import logging
import urllib.parse
from dataclasses import dataclass
from typing import List, Optional, Sequence

from didlogin.actions import ActionHandler, ClaimRequest, SignSdr

logger = logging.getLogger(__name__)

DEFAULT_LOGIN_CLAIMS = (
    ClaimRequest(claim_type="name", reason="We need this information", essential=True),
)


@dataclass(frozen=True)
class SignedRequest:
    """An issued login request."""

    token: str
    tag: str
    expires_at: int


class LoginRequestIssuer:
    """
    Signs login requests for sessions.

    Example:
        >>> issuer = LoginRequestIssuer(actions, validity_seconds=600)
        >>> request = issuer.issue_login_request("sess-123", [ClaimRequest("name")])
        >>> url = login_url("https://login.example.com", request.token)
    """

    def __init__(
        self,
        actions: ActionHandler,
        validity_seconds: int = 600,
        reply_url: Optional[str] = None,
    ):
        if validity_seconds <= 0:
            raise ValueError("validity_seconds must be positive")

        self._actions = actions
        self._validity = validity_seconds
        self.reply_url = reply_url

    def issue_login_request(
        self, session_tag: str, claims: Sequence[ClaimRequest] = DEFAULT_LOGIN_CLAIMS
    ) -> SignedRequest:
        """
        Sign an SDR embedding ``session_tag`` unmodified.

        Raises:
            ValueError: If the tag or the claim list is empty.
            SigningError: If the issuer identity cannot sign.
        """
        if not session_tag:
            raise ValueError("Login request requires a session tag")

        claim_list: List[ClaimRequest] = list(claims)
        if not claim_list:
            raise ValueError("Login request requires at least one claim")

        expires_at = int(time.time()) + self._validity
        token = self._actions.handle_action(
            SignSdr(
                tag=session_tag,
                claims=claim_list,
                reply_url=self.reply_url,
                expiry_seconds=self._validity,
            )
        )

        logger.info(f"Issued login request for session {session_tag}")
        return SignedRequest(token=token, tag=session_tag, expires_at=expires_at)


# Characters encodeURI leaves alone besides letters, digits and "-_.~"
URI_SAFE = ";,/?:@&=+$!*'()#"


def login_url(host: str, token: str) -> str:
    """Deep link a wallet opens to answer a request (``<host>/?c_i=<jwt>``)."""
    return urllib.parse.quote(host + "/?c_i=", safe=URI_SAFE) + token
