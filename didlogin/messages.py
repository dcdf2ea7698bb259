"""
Inbound message handling.

Wallets answer login requests by POSTing a signed JWT (or a URL carrying
one in its ``c_i`` query parameter) to the messaging endpoint. The handler
validates the token against the sender's DID, stores the result and
publishes a ``MessageSaved`` event for the login listener.
"""

import hashlib
import json
import time
import logging
import urllib.parse
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from jwcrypto import jwk, jws
from jwcrypto.common import JWException, base64url_decode

from didlogin.errors import ValidationError
from didlogin.events import EventBus, MessageSaved
from didlogin.nonce import MemoryNonceTracker
from didlogin.resolver import DIDResolver

logger = logging.getLogger(__name__)

CLAIM_TYPES = {
    "iss": (str,),
    "exp": (int, float),
    "nbf": (int, float),
    "jti": (str,),
    "tag": (str,),
    "thid": (str,),
}


class MessageType(str, Enum):
    """Types of messages the endpoint accepts."""

    VP = "w3c.vp"
    VC = "w3c.vc"
    SDR = "sdr"


@dataclass
class Message:
    """A validated inbound message."""

    id: str
    raw: str
    type: MessageType
    sender: str
    data: Dict[str, Any]
    thread_id: Optional[str] = None
    receiver: Optional[str] = None
    created_at: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "sender": self.sender,
            "receiver": self.receiver,
            "thread_id": self.thread_id,
            "created_at": self.created_at,
            "data": self.data,
        }


def unverified_claims(token: str) -> Dict[str, Any]:
    """Decode a JWT payload without checking its signature."""
    parts = token.split(".")
    if len(parts) != 3:
        raise ValueError("Invalid token format")
    return json.loads(base64url_decode(parts[1]))


def classify(claims: Dict[str, Any]) -> Optional[MessageType]:
    """Determine the message type from a claim set."""
    if "vp" in claims:
        return MessageType.VP
    if "vc" in claims:
        return MessageType.VC
    if claims.get("type") == MessageType.SDR.value:
        return MessageType.SDR
    return None


class MessageStore:
    """In-memory store of validated messages."""

    def __init__(self) -> None:
        self._messages: Dict[str, Message] = {}

    async def save(self, message: Message) -> None:
        self._messages[message.id] = message

    async def get(self, message_id: str) -> Optional[Message]:
        return self._messages.get(message_id)

    async def find_messages(
        self, sender: Optional[str] = None, type: Optional[MessageType] = None
    ) -> List[Message]:
        """Return stored messages filtered by sender and/or type, oldest first."""
        return [
            m
            for m in self._messages.values()
            if (sender is None or m.sender == sender) and (type is None or m.type == type)
        ]

    async def short_id(self, did: Optional[str]) -> Optional[str]:
        """
        Display name for a DID.

        Uses the most recent ``name`` claim received about the DID, falling
        back to an abbreviated form of the DID itself.
        """
        if not did:
            return None

        for message in reversed(list(self._messages.values())):
            name = _name_claim(message, did)
            if name:
                return name

        if len(did) > 24:
            return f"{did[:14]}...{did[-4:]}"
        return did


def _name_claim(message: Message, did: str) -> Optional[str]:
    if message.type == MessageType.VC:
        credentials = [message.data]
    elif message.type == MessageType.VP and message.sender == did:
        credentials = []
        for entry in message.data.get("vp", {}).get("verifiableCredential", []):
            if isinstance(entry, str):
                try:
                    entry = unverified_claims(entry)
                except ValueError:
                    continue
            credentials.append(entry)
    else:
        return None

    for credential in credentials:
        subject = credential.get("vc", credential).get("credentialSubject", {})
        subject_did = credential.get("sub") or subject.get("id")
        if subject_did == did and subject.get("name"):
            return subject["name"]
    return None


class MessageHandler:
    """
    Validates raw inbound messages and announces them.

    Example:
        >>> handler = MessageHandler(resolver, MessageStore(), EventBus())
        >>> message = await handler.handle_message(request_body)
        >>> message.id
    """

    def __init__(
        self,
        resolver: DIDResolver,
        store: MessageStore,
        events: EventBus,
        nonce_tracker: Optional[MemoryNonceTracker] = None,
        clock_skew_seconds: int = 30,
    ):
        self._resolver = resolver
        self._store = store
        self._events = events
        self._nonce_tracker = nonce_tracker or MemoryNonceTracker()
        self._clock_skew = clock_skew_seconds

    async def handle_message(self, raw: Union[bytes, str]) -> Message:
        """
        Validate, store and announce an inbound message.

        The ``MessageSaved`` event is published without waiting for
        listeners; the caller gets the message back as soon as it is stored.

        Raises:
            ValidationError: If the message cannot be parsed or verified.
        """
        token = self._extract_token(raw)
        message = await self._validate(token)

        await self._store.save(message)
        logger.info(f"Saved {message.type.value} message {message.id} from {message.sender}")

        self._events.publish(MessageSaved(message=message))
        return message

    @staticmethod
    def _extract_token(raw: Union[bytes, str]) -> str:
        if isinstance(raw, bytes):
            try:
                raw = raw.decode("utf-8")
            except UnicodeDecodeError:
                raise ValidationError("Message is not valid UTF-8")

        text = raw.strip()
        if not text:
            raise ValidationError("Empty message")

        if "c_i=" in text:
            query = urllib.parse.urlparse(text).query
            values = urllib.parse.parse_qs(query).get("c_i")
            if not values:
                raise ValidationError("URL message has no c_i parameter")
            text = values[0]

        return text

    async def _validate(self, token: str) -> Message:
        try:
            jws_token = jws.JWS()
            jws_token.deserialize(token)
            payload_bytes = jws_token.objects.get("payload", b"")
            if isinstance(payload_bytes, str):
                payload_bytes = payload_bytes.encode("utf-8")
            claims = json.loads(payload_bytes.decode("utf-8"))
        except (JWException, ValueError) as e:
            raise ValidationError(f"Invalid message format: {e}")

        if not isinstance(claims, dict):
            raise ValidationError("Invalid message format: payload is not an object")

        message_type = classify(claims)
        if message_type is None:
            raise ValidationError("Unsupported message type")

        _check_claim_types(claims)

        sender = claims.get("iss")
        if not sender:
            raise ValidationError("Message has no issuer (iss)")

        try:
            public_key = await self._resolver.public_key_jwk(sender)
        except Exception as e:
            raise ValidationError(f"Could not resolve public key for {sender}: {e}")

        try:
            jws_token.verify(jwk.JWK.from_json(public_key))
        except JWException:
            raise ValidationError("Signature verification failed")

        now = int(time.time())
        exp = claims.get("exp")
        if exp is not None and now > exp + self._clock_skew:
            raise ValidationError("Message expired")

        nbf = claims.get("nbf")
        if nbf is not None and now < nbf - self._clock_skew:
            raise ValidationError("Message not yet valid")

        message_id = hashlib.sha256(token.encode("utf-8")).hexdigest()
        nonce = claims.get("jti") or message_id
        nonce_expiry = exp if exp is not None else now + 86400
        if not await self._nonce_tracker.check_and_mark(nonce, nonce_expiry):
            logger.warning(f"Replayed message blocked: {nonce}")
            raise ValidationError("Replayed message")

        thread_id = claims.get("tag") or claims.get("thid")
        receiver = claims.get("aud")
        if isinstance(receiver, list):
            receiver = receiver[0] if receiver else None

        return Message(
            id=message_id,
            raw=token,
            type=message_type,
            sender=sender,
            data=claims,
            thread_id=thread_id,
            receiver=receiver,
        )


def _check_claim_types(claims: Dict[str, Any]) -> None:
    """Reject registered claims whose JSON type is wrong (``bool`` is not a date)."""
    for name, types in CLAIM_TYPES.items():
        value = claims.get(name)
        if value is None:
            continue
        if isinstance(value, bool) or not isinstance(value, types):
            raise ValidationError(
                f"Invalid message format: {name} claim has type {type(value).__name__}"
            )
