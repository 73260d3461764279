from __future__ import annotations

import base64
import hashlib
import hmac
import json
import time
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from wessley.logging import get_logger

logger = get_logger(__name__)

# Tolerated clock drift between Supabase and this process
CLOCK_SKEW_SECONDS = 30
SUPABASE_TIMEOUT = 30.0


@dataclass
class AuthContext:
    user_id: str
    email: Optional[str] = None
    role: str = "authenticated"


class AuthService:
    """Verify Supabase access tokens and complete the OAuth code exchange.

    Supabase signs access tokens with the project's JWT secret (HS256), so
    verification is local: signature, ``exp`` and ``aud``. Sessions and
    refresh live entirely in Supabase.
    """

    def __init__(
        self,
        *,
        jwt_secret: Optional[str],
        audience: str = "authenticated",
        supabase_url: Optional[str] = None,
        anon_key: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.jwt_secret = jwt_secret
        self.audience = audience
        self.supabase_url = (supabase_url or "").rstrip("/") or None
        self.anon_key = anon_key
        self._transport = transport

    def _encode_segment(self, data: bytes) -> str:
        return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")

    def _decode_segment(self, segment: str) -> bytes:
        padding = "=" * ((4 - len(segment) % 4) % 4)
        return base64.urlsafe_b64decode(segment + padding)

    def _sign(self, signing_input: str) -> str:
        digest = hmac.new(
            (self.jwt_secret or "").encode(), signing_input.encode(), hashlib.sha256
        ).digest()
        return self._encode_segment(digest)

    def issue_access_token(
        self,
        user_id: str,
        *,
        email: Optional[str] = None,
        role: str = "authenticated",
        ttl_seconds: int = 3600,
    ) -> str:
        """Mint a token shaped like a Supabase access token (used by tooling and tests)."""
        if not self.jwt_secret:
            raise RuntimeError("SUPABASE_JWT_SECRET is not configured")
        now = int(time.time())
        header = {"alg": "HS256", "typ": "JWT"}
        payload = {
            "sub": user_id,
            "email": email,
            "role": role,
            "aud": self.audience,
            "iat": now,
            "exp": now + ttl_seconds,
        }
        header_enc = self._encode_segment(json.dumps(header, separators=(",", ":")).encode())
        payload_enc = self._encode_segment(json.dumps(payload, separators=(",", ":")).encode())
        signing_input = f"{header_enc}.{payload_enc}"
        return f"{signing_input}.{self._sign(signing_input)}"

    def decode_token(self, token: str) -> Optional[dict[str, Any]]:
        if not self.jwt_secret:
            logger.error("jwt_secret_missing")
            return None
        try:
            header_b64, payload_b64, sig_b64 = token.split(".")
        except ValueError:
            return None

        try:
            header = json.loads(self._decode_segment(header_b64))
        except ValueError:
            logger.warning("jwt_header_decode_failed")
            return None
        alg = header.get("alg") if isinstance(header, dict) else None
        if alg != "HS256":
            logger.warning("jwt_invalid_algorithm", alg=alg)
            return None

        expected = self._sign(f"{header_b64}.{payload_b64}").encode()
        if not hmac.compare_digest(expected, sig_b64.encode("utf-8", "surrogateescape")):
            return None
        try:
            payload = json.loads(self._decode_segment(payload_b64))
        except ValueError as exc:
            logger.warning("jwt_payload_decode_failed", error=str(exc))
            return None
        if not isinstance(payload, dict):
            return None

        aud = payload.get("aud")
        if isinstance(aud, list):
            valid_aud = self.audience in aud
        else:
            valid_aud = aud == self.audience
        if not valid_aud:
            return None
        try:
            exp_ts = float(payload.get("exp"))
        except (TypeError, ValueError):
            return None
        if exp_ts <= time.time() - CLOCK_SKEW_SECONDS:
            return None
        return payload

    @staticmethod
    def _extract_bearer(header: Optional[str]) -> Optional[str]:
        if not header:
            return None
        scheme, _, token = header.partition(" ")
        if scheme.lower() != "bearer" or not token.strip():
            return None
        return token.strip()

    def authenticate(self, authorization: Optional[str]) -> Optional[AuthContext]:
        token = self._extract_bearer(authorization)
        if not token:
            return None
        payload = self.decode_token(token)
        if not payload or not payload.get("sub"):
            return None
        return AuthContext(
            user_id=str(payload["sub"]),
            email=payload.get("email"),
            role=payload.get("role") or "authenticated",
        )

    async def exchange_code(
        self, code: str, code_verifier: Optional[str] = None
    ) -> Optional[dict]:
        """Trade an OAuth authorization code for a Supabase session.

        Returns the session payload, or ``None`` when Supabase rejects the
        code or cannot be reached.
        """

        if not self.supabase_url or not self.anon_key:
            logger.error("supabase_not_configured")
            return None
        try:
            async with httpx.AsyncClient(
                timeout=SUPABASE_TIMEOUT, transport=self._transport
            ) as client:
                response = await client.post(
                    f"{self.supabase_url}/auth/v1/token",
                    params={"grant_type": "pkce"},
                    json={"auth_code": code, "code_verifier": code_verifier},
                    headers={"apikey": self.anon_key},
                )
        except httpx.HTTPError as exc:
            logger.error("auth_code_exchange_failed", error_type=type(exc).__name__)
            return None
        if not response.is_success:
            logger.warning("auth_code_exchange_rejected", status_code=response.status_code)
            return None
        return response.json()
