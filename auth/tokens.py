"""
auth/tokens.py -- Access/refresh token minting, verification and session lifecycle.

Security design decisions:
  Access tokens: python-jose HS256 JWTs signed with JWT_SECRET. They carry
       user_id, email, role, status plus iss/aud/iat/exp and type="access".
       They are never persisted: validity is signature + issuer/audience +
       expiry at verification time. The embedded role/status is a snapshot
       only -- the authorization gate re-reads the user on every request.

  Refresh tokens: HS256 JWTs signed with a *different* key (JWT_REFRESH_SECRET)
       and type="refresh", each with a random jti. Every refresh token is
       backed by one row in the sessions table, so it can be revoked before
       it expires. The row stores HMAC-SHA256(JWT_REFRESH_SECRET, token),
       never the token itself -- same approach as hashed API keys: a
       deterministic hash gives O(1) lookup and a DB dump alone cannot be
       replayed.

  Expiry is compared against the injected clock rather than jose's own
       time.time() so lock windows, session TTLs and token lifetimes all
       share one notion of "now".

Refresh token state machine:
  ISSUED   -- session row exists and is unexpired.
  ROTATED  -- (only with ROTATE_REFRESH_TOKENS) old row marked rotated_at, new
              pair issued. Presenting it again is replay: every session of
              the user is revoked.
  REVOKED  -- row deleted by logout, password change, or user deletion.
  EXPIRED  -- row exists but its expiry has passed; treated as unknown and
              deleted the next time the token is presented.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from datetime import timedelta

from jose import jwt
from jose.exceptions import ExpiredSignatureError, JWTClaimsError, JWTError

from auth.errors import (
    AccountNotActiveError,
    RefreshTokenReuseError,
    SessionNotFoundError,
    TokenExpiredError,
    TokenInvalidError,
    UserNotFoundError,
)
from auth.models import ClientInfo, RefreshResult, Session, TokenPair, User
from auth.store import AuthStore
from core.clock import Clock, utc_now
from core.config import Settings

logger = logging.getLogger("keyward.auth")

_ALGORITHM = "HS256"
_ACCESS = "access"
_REFRESH = "refresh"
_ACCESS_CLAIMS = ("user_id", "email", "role", "status")


class TokenAuthority:
    """Mints and verifies tokens and owns the refresh-session lifecycle.

    Usage:
        tokens = TokenAuthority(settings, store)
        pair = tokens.issue_pair(user, ClientInfo(ip="10.0.0.1", user_agent="curl"))
        claims = tokens.verify_access_token(pair.access_token)
        result = tokens.refresh(pair.refresh_token, client)
        tokens.revoke(pair.refresh_token)
    """

    def __init__(self, settings: Settings, store: AuthStore, clock: Clock = utc_now) -> None:
        self._access_secret = settings.jwt_secret
        self._refresh_secret = settings.jwt_refresh_secret
        self.issuer = settings.jwt_issuer
        self.audience = settings.jwt_audience
        self.access_ttl = timedelta(seconds=settings.access_token_expire_seconds)
        self.refresh_ttl = timedelta(seconds=settings.refresh_token_expire_seconds)
        self.rotate = settings.rotate_refresh_tokens
        self._store = store
        self._clock = clock

    @property
    def access_expires_in(self) -> int:
        return int(self.access_ttl.total_seconds())

    # ------------------------------------------------------------------
    # Encode / decode
    # ------------------------------------------------------------------

    def _encode(self, claims: dict, secret: str, ttl: timedelta) -> str:
        now = self._clock()
        payload = {
            **claims,
            "iss": self.issuer,
            "aud": self.audience,
            "iat": int(now.timestamp()),
            "exp": int((now + ttl).timestamp()),
        }
        return jwt.encode(payload, secret, algorithm=_ALGORITHM)

    def _decode(self, token: str, secret: str, token_type: str) -> dict:
        """Verify signature, issuer, audience, type and expiry.

        jose checks everything except expiry; exp is required to be present
        and then compared against the injected clock.
        """
        try:
            payload = jwt.decode(
                token,
                secret,
                algorithms=[_ALGORITHM],
                audience=self.audience,
                issuer=self.issuer,
                options={"verify_exp": False, "require_exp": True},
            )
        except ExpiredSignatureError as exc:
            raise TokenExpiredError() from exc
        except JWTClaimsError as exc:
            raise TokenInvalidError("bad_audience") from exc
        except JWTError as exc:
            raise TokenInvalidError("bad_signature") from exc

        if payload.get("type") != token_type:
            raise TokenInvalidError("wrong_type")
        if payload["exp"] <= self._clock().timestamp():
            raise TokenExpiredError()
        return payload

    def hash_refresh_token(self, token: str) -> str:
        """Return HMAC-SHA256(JWT_REFRESH_SECRET, token) as a hex string."""
        return hmac.new(self._refresh_secret.encode(), token.encode(), hashlib.sha256).hexdigest()

    # ------------------------------------------------------------------
    # Access tokens (stateless)
    # ------------------------------------------------------------------

    def mint_access_token(self, user: User) -> str:
        claims = {
            "sub": user.id,
            "user_id": user.id,
            "email": user.email,
            "role": user.role.value,
            "status": user.status.value,
            "type": _ACCESS,
        }
        return self._encode(claims, self._access_secret, self.access_ttl)

    def verify_access_token(self, token: str) -> dict:
        """Return the claims of a valid access token.

        Raises TokenExpiredError or TokenInvalidError (bad signature, wrong
        audience/issuer, wrong token type, missing identity claims).
        """
        payload = self._decode(token, self._access_secret, _ACCESS)
        if any(claim not in payload for claim in _ACCESS_CLAIMS):
            raise TokenInvalidError("missing_claims")
        return payload

    # ------------------------------------------------------------------
    # Refresh tokens (stateful)
    # ------------------------------------------------------------------

    def mint_refresh_token(self, user_id: str, client: ClientInfo) -> tuple[str, Session]:
        """Mint a refresh token and persist the Session row that backs it."""
        now = self._clock()
        token = self._encode(
            {"sub": user_id, "user_id": user_id, "type": _REFRESH, "jti": secrets.token_urlsafe(16)},
            self._refresh_secret,
            self.refresh_ttl,
        )
        session = Session(
            user_id=user_id,
            token_hash=self.hash_refresh_token(token),
            expires_at=now + self.refresh_ttl,
            ip_address=client.ip,
            user_agent=client.user_agent,
            created_at=now,
        )
        session.id = self._store.create_session(session)
        return token, session

    def issue_pair(self, user: User, client: ClientInfo) -> TokenPair:
        """Mint an access token and a new refresh session for a login or registration."""
        refresh_token, _session = self.mint_refresh_token(user.id, client)
        return TokenPair(
            access_token=self.mint_access_token(user),
            refresh_token=refresh_token,
            expires_in=self.access_expires_in,
        )

    def refresh(self, refresh_token: str, client: ClientInfo) -> RefreshResult:
        """Exchange a refresh token for a new access token.

        Validity is re-checked on every call, never cached:
          1. signature / issuer / audience / type of the refresh JWT,
          2. a matching, unexpired session row,
          3. the owning user still exists and is ACTIVE.

        Default mode returns the same refresh token and records the caller's
        ip/user-agent on the session. With rotation on, the old row is
        marked rotated and a new refresh token issued. Presenting a token
        whose row was rotated is treated as replay and revokes every session
        of that user. A token whose row was deleted (logout, revocation)
        just fails with SessionNotFoundError.
        """
        token_hash = self.hash_refresh_token(refresh_token)
        try:
            claims = self._decode(refresh_token, self._refresh_secret, _REFRESH)
        except TokenExpiredError as exc:
            self._store.delete_session(token_hash)
            raise SessionNotFoundError() from exc

        session = self._store.find_session(token_hash)
        if session is None:
            raise SessionNotFoundError()
        if session.rotated_at is not None:
            revoked = self._store.delete_sessions_by_user(session.user_id)
            logger.warning(
                "Refresh token reuse detected for user %s; revoked %d session(s)", session.user_id, revoked
            )
            raise RefreshTokenReuseError(session.user_id, revoked)

        now = self._clock()
        if session.expires_at <= now:
            self._store.delete_session(token_hash)
            raise SessionNotFoundError()
        if session.user_id != claims["user_id"]:
            raise TokenInvalidError("subject_mismatch")

        user = self._store.find_user_by_id(session.user_id)
        if user is None:
            raise UserNotFoundError()
        if not user.is_active:
            raise AccountNotActiveError()

        if self.rotate:
            if self._store.mark_session_rotated(token_hash, now) == 0:
                # A concurrent refresh of the same session already rotated it.
                raise SessionNotFoundError()
            new_refresh, _session = self.mint_refresh_token(user.id, client)
            return RefreshResult(self.mint_access_token(user), new_refresh, self.access_expires_in, user, rotated=True)

        self._store.update_session_client(session.id, client.ip, client.user_agent, now)
        return RefreshResult(self.mint_access_token(user), refresh_token, self.access_expires_in, user)

    def revoke(self, refresh_token: str) -> Session | None:
        """Delete the session behind a refresh token. Idempotent.

        Returns the deleted session (so callers can attribute the logout),
        or None if there was nothing live to delete. A rotated row is left
        in place so a later replay is still recognised.
        """
        token_hash = self.hash_refresh_token(refresh_token)
        session = self._store.find_session(token_hash)
        if session is None or session.rotated_at is not None:
            return None
        if self._store.delete_session(token_hash) == 0:
            return None
        return session

    def revoke_all(self, user_id: str) -> int:
        """Delete every session for a user ("log out everywhere")."""
        return self._store.delete_sessions_by_user(user_id)
