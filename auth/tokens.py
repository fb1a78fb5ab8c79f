"""
auth/tokens.py -- Access token codec and token extraction chain.

Security design decisions:
  JWT: python-jose with HS256. Tokens carry user_id, authorized=true and exp.
       They are stateless, so an individual token cannot be revoked before it
       expires; the short lifetime (ACCESS_TOKEN_MINUTES, default 15) bounds
       the exposure window.

  Algorithm pinning: verify() reads the unverified header first and refuses
       anything outside the HMAC family before the signature is checked. This
       closes the "alg: none" / RS-vs-HS confusion downgrade.

  SECRET_KEY: injected into AccessTokenCodec by the caller (api/main.py reads
       it from core.config.get_settings()). Nothing in this module reads the
       environment.

  Token sources: the access token may arrive as a ?token= query parameter or
       an Authorization: Bearer header. The query parameter wins when both are
       present (older clients send it that way). Sources are an ordered list
       of callables; the first non-empty result is used.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from jose import ExpiredSignatureError, JWTError, jwt

from auth.errors import AccessTokenExpired, AccessTokenInvalid

ALGORITHM = "HS256"
_HMAC_ALGORITHMS = ("HS256", "HS384", "HS512")


# ---------------------------------------------------------------------------
# Codec
# ---------------------------------------------------------------------------


class AccessTokenCodec:
    """Mint and verify signed, short-lived access tokens.

    Usage:
        codec = AccessTokenCodec(settings.secret_key, settings.access_token_minutes)
        token = codec.mint(42)
        codec.extract_subject_id(token)  # -> 42
    """

    def __init__(self, secret_key: str, lifetime_minutes: int = 15) -> None:
        if not secret_key:
            raise ValueError("AccessTokenCodec requires a non-empty secret key")
        self._secret_key = secret_key
        self.lifetime = timedelta(minutes=lifetime_minutes)

    @property
    def expires_in(self) -> int:
        """Lifetime of freshly minted tokens, in seconds."""
        return int(self.lifetime.total_seconds())

    def mint(self, subject_id: int) -> str:
        """Encode a signed JWT for subject_id expiring after the configured lifetime."""
        payload = {
            "authorized": True,
            "user_id": subject_id,
            "exp": datetime.now(timezone.utc) + self.lifetime,
        }
        return jwt.encode(payload, self._secret_key, algorithm=ALGORITHM)

    def verify(self, token: Optional[str]) -> dict[str, Any]:
        """Return the verified claims.

        Raises AccessTokenExpired when the signature is good but exp has
        passed, AccessTokenInvalid for anything else (empty, malformed,
        non-HMAC alg, bad signature, missing user_id).
        """
        if not token:
            raise AccessTokenInvalid("no access token supplied")
        try:
            header = jwt.get_unverified_header(token)
        except JWTError as exc:
            raise AccessTokenInvalid("malformed access token") from exc
        alg = header.get("alg")
        if alg not in _HMAC_ALGORITHMS:
            raise AccessTokenInvalid(f"unexpected signing method: {alg!r}")
        try:
            claims = jwt.decode(token, self._secret_key, algorithms=list(_HMAC_ALGORITHMS))
        except ExpiredSignatureError as exc:
            raise AccessTokenExpired("access token has expired") from exc
        except JWTError as exc:
            raise AccessTokenInvalid("access token failed verification") from exc
        if "user_id" not in claims or not claims.get("authorized"):
            raise AccessTokenInvalid("access token is missing required claims")
        return claims

    def extract_subject_id(self, token: Optional[str]) -> int:
        """Return the verified user_id claim as an int."""
        claims = self.verify(token)
        try:
            return int(claims["user_id"])
        except (TypeError, ValueError) as exc:
            raise AccessTokenInvalid("user_id claim is not an integer") from exc


# ---------------------------------------------------------------------------
# Token extraction chain
# ---------------------------------------------------------------------------

# A source takes the incoming request and returns a token string or None.
TokenSource = Callable[[Any], Optional[str]]


def query_param_source(name: str = "token") -> TokenSource:
    """Read the token from a query string parameter."""

    def _source(request) -> Optional[str]:
        return request.query_params.get(name) or None

    return _source


def bearer_header_source(header: str = "Authorization") -> TokenSource:
    """Read the token from an ``Authorization: Bearer <token>`` header."""

    def _source(request) -> Optional[str]:
        parts = request.headers.get(header, "").split(" ")
        if len(parts) == 2 and parts[0].lower() == "bearer" and parts[1]:
            return parts[1]
        return None

    return _source


DEFAULT_TOKEN_SOURCES: tuple[TokenSource, ...] = (
    query_param_source("token"),
    bearer_header_source(),
)


def extract_token(request, sources: Sequence[TokenSource] = DEFAULT_TOKEN_SOURCES) -> Optional[str]:
    """Try each source in order and return the first token found."""
    for source in sources:
        token = source(request)
        if token:
            return token
    return None
