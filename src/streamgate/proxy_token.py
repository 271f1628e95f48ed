"""Proxy capability tokens.

A token authorizes the secure proxy to fetch exactly one upstream URL until
an expiry time. It is an AES-256-GCM sealed JSON payload, serialized as::

    v1.<iv>.<auth tag>.<ciphertext>

with every segment base64url encoded without padding. The key is the
SHA-256 digest of the configured secret; every token uses a fresh 12-byte
IV. Tokens are stateless, so there is no revocation short of rotating the
secret.
"""

import base64
import binascii
import hashlib
import json
import math
import os
import time
from typing import Any, Callable, Mapping, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .events import StreamEvents
from .exceptions import ProxyTokenDisabledError, ProxyTokenInvalidError
from .log_config import get_context_logger
from .types import ProxyTokenPayload


TOKEN_VERSION = "v1"
DEFAULT_TTL_SECONDS = 6 * 60 * 60
IV_LENGTH = 12
TAG_LENGTH = 16


def _b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _b64url_decode(segment: str) -> bytes:
    padding = "=" * (-len(segment) % 4)
    return base64.urlsafe_b64decode((segment + padding).encode("ascii"))


class ProxyTokenService:
    """Creates and verifies proxy tokens.

    The service is disabled, and every call returns ``None``, when no secret
    is configured.
    """

    def __init__(
        self,
        secret: Optional[str],
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        secret = (secret or "").strip()
        self._aesgcm = AESGCM(hashlib.sha256(secret.encode("utf-8")).digest()) if secret else None
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self.logger = get_context_logger("proxy_token")

    @property
    def enabled(self) -> bool:
        return self._aesgcm is not None

    def create(
        self,
        target: str,
        exp: Optional[int] = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> Optional[str]:
        """Seal a token for ``target``.

        Args:
            target: Absolute upstream URL
            exp: Expiry as Unix seconds; defaults to now plus the TTL
            headers: Upstream request headers to carry inside the token
        """
        if self._aesgcm is None:
            return None
        if exp is None:
            exp = int(self.clock()) + self.ttl_seconds

        payload: dict[str, Any] = {"target": target, "exp": int(exp)}
        if headers:
            payload["headers"] = dict(headers)
        plaintext = json.dumps(payload, separators=(",", ":")).encode("utf-8")

        iv = os.urandom(IV_LENGTH)
        sealed = self._aesgcm.encrypt(iv, plaintext, None)
        ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
        return ".".join(
            (TOKEN_VERSION, _b64url_encode(iv), _b64url_encode(tag), _b64url_encode(ciphertext))
        )

    def decode(self, token: Optional[str]) -> Optional[ProxyTokenPayload]:
        """Open and validate a token; ``None`` for anything not fully valid."""
        try:
            return self.verify(token)
        except (ProxyTokenDisabledError, ProxyTokenInvalidError) as e:
            self.logger.debug(StreamEvents.TOKEN_REJECTED, reason=e.message)
            return None

    def verify(self, token: Optional[str]) -> ProxyTokenPayload:
        """Like :meth:`decode` but raises with the rejection reason.

        Raises:
            ProxyTokenDisabledError: No secret is configured
            ProxyTokenInvalidError: The token is malformed, forged or expired
        """
        if self._aesgcm is None:
            raise ProxyTokenDisabledError("Proxy tokens are disabled")
        if not token:
            raise ProxyTokenInvalidError("Missing token")

        parts = token.split(".")
        if len(parts) != 4:
            raise ProxyTokenInvalidError("Malformed token")
        version, iv_part, tag_part, ciphertext_part = parts
        if version != TOKEN_VERSION:
            raise ProxyTokenInvalidError("Unsupported token version")

        try:
            iv = _b64url_decode(iv_part)
            tag = _b64url_decode(tag_part)
            ciphertext = _b64url_decode(ciphertext_part)
        except (binascii.Error, ValueError):
            raise ProxyTokenInvalidError("Malformed token encoding") from None
        if len(iv) != IV_LENGTH or len(tag) != TAG_LENGTH:
            raise ProxyTokenInvalidError("Malformed token")

        try:
            plaintext = self._aesgcm.decrypt(iv, ciphertext + tag, None)
        except InvalidTag:
            raise ProxyTokenInvalidError("Token authentication failed") from None

        try:
            payload = json.loads(plaintext.decode("utf-8"))
        except (UnicodeDecodeError, ValueError):
            raise ProxyTokenInvalidError("Token payload is not JSON") from None
        return self._validate(payload)

    def _validate(self, payload: Any) -> ProxyTokenPayload:
        if not isinstance(payload, dict):
            raise ProxyTokenInvalidError("Token payload is not an object")

        target = payload.get("target")
        if not isinstance(target, str) or not target:
            raise ProxyTokenInvalidError("Token has no target")

        exp = payload.get("exp")
        if isinstance(exp, bool) or not isinstance(exp, (int, float)) or not math.isfinite(exp):
            raise ProxyTokenInvalidError("Token has no valid expiry")
        exp = math.floor(exp)
        if exp <= self.clock():
            raise ProxyTokenInvalidError("Token expired")

        headers = payload.get("headers", {})
        if not isinstance(headers, dict) or not all(
            isinstance(k, str) and isinstance(v, str) for k, v in headers.items()
        ):
            raise ProxyTokenInvalidError("Token headers are malformed")

        return ProxyTokenPayload(target=target, exp=exp, headers=headers)


__all__ = ["ProxyTokenService", "TOKEN_VERSION", "DEFAULT_TTL_SECONDS"]
