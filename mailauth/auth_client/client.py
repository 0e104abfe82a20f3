"""
Session assembler: the two-round-trip SRP login plus key unlock.

    IDLE -> AWAITING_AUTH_PARAMS -> PROOF_COMPUTED -> AUTHENTICATED -> UNLOCKED
                 \\___________________\\_______________\\____> FAILED(reason)

Recommended usage pattern
- One-shot:  session = await client.login(username, password)
- Stepwise:  attempt = client.attempt(username)
             creds = await attempt.authenticate(password, two_factor_code=code)
             ring = await attempt.unlock(session, password)

Rules
- A failed server proof check discards whatever credentials the server sent.
- Unlock errors (wrong password, bad key ring) leave the attempt AUTHENTICATED
  so the caller can re-prompt without a new handshake.
- Any other error, including cancellation, ends the attempt in FAILED.
- An SRP session id is submitted at most once; pre-fetched parameters whose
  session was already used are replaced by a fresh /auth/info round-trip.
"""

from __future__ import annotations

import dataclasses
import logging
from collections import OrderedDict
from enum import Enum
from typing import Optional, Union

import httpx

from mailauth.auth_client.config import ClientConfig
from mailauth.auth_client.session import Session
from mailauth.auth_client.transport import AuthTransport
from mailauth.auth_client.wire import (
    AuthInfoRequest,
    AuthInfoResponse,
    AuthRefreshRequest,
    AuthRefreshResponse,
    AuthRequest,
    AuthResponse,
    parse_response,
    refreshed_credentials,
    to_auth_parameters,
    to_session_credentials,
)
from mailauth.errors import AuthError, InvalidStateTransition, UnlockError
from mailauth.key_unlock import UnlockedKeyRing, unlock as unlock_key_ring
from mailauth.models import AuthParameters, PasswordMode, SessionCredentials
from mailauth.srp_utils import ClientProof, compute_proof

logger = logging.getLogger(__name__)

Password = Union[bytes, str]

# Spent SRP session ids remembered per client, oldest dropped first
SPENT_SESSION_LIMIT = 1024


def _as_bytes(password: Password) -> bytes:
    if isinstance(password, str):
        return password.encode("utf-8")
    return bytes(password)


class AuthState(str, Enum):
    IDLE = "idle"
    AWAITING_AUTH_PARAMS = "awaiting_auth_params"
    PROOF_COMPUTED = "proof_computed"
    AUTHENTICATED = "authenticated"
    UNLOCKED = "unlocked"
    FAILED = "failed"


# =============================================================================
# One authentication attempt
# =============================================================================

class AuthAttempt:
    """
    State machine for a single login of one username.

    Owns its AuthParameters and ClientProof; nothing is shared with other
    attempts. `failure` holds the tagged error once the attempt is FAILED.
    """
    def __init__(self, client: "AuthClient", username: str):
        self.client = client
        self.username = username
        self.state = AuthState.IDLE
        self.failure: Optional[BaseException] = None
        self._credentials: Optional[SessionCredentials] = None

    def __repr__(self) -> str:
        return f"AuthAttempt(username={self.username!r}, state={self.state.value})"

    @property
    def credentials(self) -> Optional[SessionCredentials]:
        return self._credentials

    def _expect(self, state: AuthState, op: str) -> None:
        if self.state != state:
            raise InvalidStateTransition(f"{op}() not allowed in state {self.state.value}")

    def _move(self, state: AuthState) -> None:
        logger.debug("auth attempt %s: %s -> %s", self.username, self.state.value, state.value)
        self.state = state

    def _fail(self, error: BaseException) -> None:
        logger.debug("auth attempt %s failed in %s: %s", self.username, self.state.value, type(error).__name__)
        self.state = AuthState.FAILED
        self.failure = error
        self._credentials = None

    async def authenticate(
        self,
        password: Password,
        *,
        two_factor_code: str = "",
        info: Optional[AuthParameters] = None,
    ) -> SessionCredentials:
        """
        Run both SRP round-trips and verify the server's proof.

        info: pre-fetched parameters to skip /auth/info (e.g. when resuming a
        two-factor prompt). Ignored if its SRP session was already submitted.
        """
        self._expect(AuthState.IDLE, "authenticate")
        try:
            self._move(AuthState.AWAITING_AUTH_PARAMS)
            if info is not None and self.client.is_spent(info):
                logger.info("SRP session for %s already used; fetching fresh parameters", self.username)
                info = None
            if info is None:
                info = await self.client.auth_info(self.username)
            elif not info.username:
                info = dataclasses.replace(info, username=self.username)

            proof = compute_proof(_as_bytes(password), info, modulus_key=self.client.config.modulus_key)
            self._move(AuthState.PROOF_COMPUTED)

            resp = await self.client.submit_proof(info, proof, two_factor_code=two_factor_code)
            proof.verify(resp.server_proof)
            credentials = to_session_credentials(resp)
        except BaseException as e:
            self._fail(e)
            raise

        self._credentials = credentials
        self._move(AuthState.AUTHENTICATED)
        logger.info("Authenticated %s (uid=%s)", self.username, credentials.uid)
        return credentials

    async def unlock(self, session: Session, password: Password) -> UnlockedKeyRing:
        """
        Unlock the private keys and commit them to `session`.

        password is the login password in single-password mode and the
        mailbox password in two-password mode.
        """
        self._expect(AuthState.AUTHENTICATED, "unlock")
        if self._credentials is None:
            raise InvalidStateTransition("unlock() requires credentials from authenticate()")
        try:
            ring = await self.client.unlock(session, self._credentials, password)
        except UnlockError:
            # Credentials are still valid; the caller may retry with another password
            raise
        except BaseException as e:
            self._fail(e)
            raise

        self._move(AuthState.UNLOCKED)
        return ring


# =============================================================================
# Client
# =============================================================================

class AuthClient:
    """
    Entry point for authenticating against the mail API.

    transport is an optional httpx transport (tests use httpx.MockTransport).
    spent_session_limit caps how many submitted SRP session ids are remembered.
    """
    def __init__(
        self,
        config: ClientConfig,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        spent_session_limit: int = SPENT_SESSION_LIMIT,
    ):
        self.config = config
        self.transport = AuthTransport(config, transport=transport)
        self._spent_sessions: OrderedDict[str, None] = OrderedDict()
        self._spent_session_limit = max(1, spent_session_limit)

    def attempt(self, username: str) -> AuthAttempt:
        return AuthAttempt(self, username)

    def is_spent(self, info: AuthParameters) -> bool:
        return info.srp_session in self._spent_sessions

    def mark_spent(self, srp_session: str) -> None:
        self._spent_sessions[srp_session] = None
        self._spent_sessions.move_to_end(srp_session)
        while len(self._spent_sessions) > self._spent_session_limit:
            self._spent_sessions.popitem(last=False)

    # ----------------------------
    # Round-trips
    # ----------------------------

    async def auth_info(self, username: str) -> AuthParameters:
        req = AuthInfoRequest(
            client_id=self.config.client_id,
            client_secret=self.config.client_secret,
            username=username,
        )
        api = await self.transport.request_json("POST", "/auth/info", req.to_wire())
        return to_auth_parameters(parse_response(AuthInfoResponse, api.payload), username)

    async def submit_proof(
        self,
        info: AuthParameters,
        proof: ClientProof,
        *,
        two_factor_code: str = "",
    ) -> AuthResponse:
        if info.requires_two_factor and not two_factor_code:
            logger.debug("submitting proof for %s without a second factor", info.username)

        # Marked before sending: a session id is never replayed, even after a transport error
        self.mark_spent(info.srp_session)
        req = AuthRequest(
            client_id=self.config.client_id,
            client_secret=self.config.client_secret,
            username=info.username,
            srp_session=info.srp_session,
            client_ephemeral=proof.client_ephemeral_b64,
            client_proof=proof.client_proof_b64,
            two_factor_code=two_factor_code,
        )
        api = await self.transport.request_json("POST", "/auth", req.to_wire())
        return parse_response(AuthResponse, api.payload)

    # ----------------------------
    # Exposed operations
    # ----------------------------

    async def auth(
        self,
        username: str,
        password: Password,
        two_factor_code: str = "",
        info: Optional[AuthParameters] = None,
    ) -> SessionCredentials:
        return await self.attempt(username).authenticate(
            password, two_factor_code=two_factor_code, info=info
        )

    async def unlock(
        self,
        session: Session,
        credentials: SessionCredentials,
        password: Password,
    ) -> UnlockedKeyRing:
        """Unlock the key ring for `credentials` and commit both to `session` atomically."""
        async with session.lock:
            ring = unlock_key_ring(credentials, _as_bytes(password))
            session.commit(credentials, ring)
        return ring

    async def login(
        self,
        username: str,
        password: Password,
        *,
        mailbox_password: Optional[Password] = None,
        two_factor_code: str = "",
        session: Optional[Session] = None,
    ) -> Session:
        """
        auth() followed by unlock() with the password the account's mode calls for.
        Two-password accounts must pass mailbox_password.
        """
        session = session or Session()
        attempt = self.attempt(username)
        credentials = await attempt.authenticate(password, two_factor_code=two_factor_code)

        if credentials.password_mode == PasswordMode.TWO:
            if mailbox_password is None:
                raise AuthError("account uses two passwords; mailbox_password is required")
            await attempt.unlock(session, mailbox_password)
        else:
            await attempt.unlock(session, password)
        return session

    async def refresh(self, session: Session) -> SessionCredentials:
        """Swap the session's tokens for fresh ones; the key ring is kept."""
        async with session.lock:
            current = session.credentials
            if current is None:
                raise InvalidStateTransition("refresh() requires an authenticated session")

            req = AuthRefreshRequest(
                client_id=self.config.client_id,
                uid=current.uid,
                refresh_token=current.refresh_token,
            )
            api = await self.transport.request_json(
                "POST", "/auth/refresh", req.to_wire(), headers={"x-pm-uid": current.uid}
            )
            updated = refreshed_credentials(current, parse_response(AuthRefreshResponse, api.payload))
            session.replace_credentials(updated)

        logger.info("Refreshed tokens for uid=%s", updated.uid)
        return updated

    async def logout(self, session: Session) -> None:
        """Revoke the session server-side and drop local state (even if revocation fails)."""
        async with session.lock:
            current = session.credentials
            if current is None:
                return
            try:
                await self.transport.request_json(
                    "DELETE",
                    "/auth",
                    headers={
                        "Authorization": f"{current.token_type} {current.access_token}",
                        "x-pm-uid": current.uid,
                    },
                )
            finally:
                session.clear()
        logger.info("Logged out uid=%s", current.uid)
