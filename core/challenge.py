"""
Proof-of-Work Challenge

Stateless challenge tokens. The server signs (session, seed, difficulty,
expiry) with HMAC-SHA256 and keeps nothing; the client must find a nonce
such that sha256(seed + nonce) starts with `difficulty` hex zeros.

Token wire format (urlsafe base64):
    <session_id>:<seed>:<difficulty>:<expires_at>:<hmac_hex>
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import logging
import secrets
import time
from typing import Optional

from core.schemas.outputs import ChallengeToken


logger = logging.getLogger(__name__)


DEFAULT_DIFFICULTY = 4
DEFAULT_TTL_SECONDS = 300


class ChallengeError(Exception):
    """Challenge token is malformed, forged, expired or unsolved."""
    pass


def solution_digest(seed: str, nonce: str) -> str:
    return hashlib.sha256(f"{seed}{nonce}".encode("utf-8")).hexdigest()


class ChallengeIssuer:
    """Issues and verifies signed proof-of-work challenges."""

    def __init__(
        self,
        secret: Optional[str] = None,
        difficulty: int = DEFAULT_DIFFICULTY,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
    ):
        if not secret:
            logger.warning("No challenge secret configured; tokens will not survive a restart")
            secret = secrets.token_hex(32)
        self._key = secret.encode("utf-8")
        self.difficulty = difficulty
        self.ttl_seconds = ttl_seconds

    def issue(self, session_id: str, now: Optional[float] = None) -> ChallengeToken:
        """Create a fresh challenge bound to a session."""
        now = time.time() if now is None else now
        seed = secrets.token_hex(16)
        expires_at = int(now) + self.ttl_seconds

        body = f"{session_id}:{seed}:{self.difficulty}:{expires_at}"
        signature = self._sign(body)
        token = base64.urlsafe_b64encode(f"{body}:{signature}".encode("utf-8")).decode("ascii")

        return ChallengeToken(
            token=token,
            seed=seed,
            difficulty=self.difficulty,
            expires_at=float(expires_at),
        )

    def verify(
        self,
        token: str,
        session_id: str,
        nonce: str,
        now: Optional[float] = None,
    ) -> None:
        """
        Check a solved challenge.

        Raises:
            ChallengeError: with the first failing check as message
        """
        now = time.time() if now is None else now

        try:
            decoded = base64.urlsafe_b64decode(token.encode("ascii")).decode("utf-8")
        except (binascii.Error, UnicodeError, ValueError) as e:
            raise ChallengeError("malformed token") from e

        parts = decoded.split(":")
        if len(parts) != 5:
            raise ChallengeError("malformed token")

        token_session, seed, difficulty_raw, expiry_raw, signature = parts
        body = f"{token_session}:{seed}:{difficulty_raw}:{expiry_raw}"
        if not hmac.compare_digest(self._sign(body).encode("ascii"), signature.encode("utf-8")):
            raise ChallengeError("invalid signature")

        if not hmac.compare_digest(token_session.encode("utf-8"), session_id.encode("utf-8")):
            raise ChallengeError("token issued for another session")

        try:
            difficulty = int(difficulty_raw)
            expires_at = int(expiry_raw)
        except ValueError as e:
            raise ChallengeError("malformed token") from e

        if now > expires_at:
            raise ChallengeError("challenge expired")

        if not solution_digest(seed, nonce).startswith("0" * difficulty):
            raise ChallengeError("proof of work not satisfied")

    def is_solved(self, token: str, session_id: str, nonce: str, now: Optional[float] = None) -> bool:
        try:
            self.verify(token, session_id, nonce, now)
        except ChallengeError as e:
            logger.info(f"Challenge rejected for {session_id[:12]}: {e}")
            return False
        return True

    def _sign(self, body: str) -> str:
        return hmac.new(self._key, body.encode("utf-8"), hashlib.sha256).hexdigest()
