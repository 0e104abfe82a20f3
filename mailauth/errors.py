"""
Tagged errors raised by the authentication and unlock flow.

Every failure aborts the current step and surfaces one of these to the caller.
Nothing here carries secret material in its message.
"""

from __future__ import annotations

from typing import Any, Optional


class AuthError(Exception):
    """Base class for everything mailauth raises on purpose."""


# -----------------------------------------------------------------------------
# Transport
# -----------------------------------------------------------------------------

class TransportError(AuthError):
    """
    Network, HTTP or JSON failure while talking to the auth API.

    - status_code: HTTP status (0 when no response was received)
    - code: API "Code" field when the body carried one
    - payload: decoded JSON body when available
    """
    def __init__(
        self,
        message: str,
        *,
        status_code: int = 0,
        code: Optional[int] = None,
        payload: Optional[Any] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.payload = payload


# -----------------------------------------------------------------------------
# Protocol integrity (possible attack indicators)
# -----------------------------------------------------------------------------

class ProtocolIntegrityError(AuthError):
    pass


class InvalidModulus(ProtocolIntegrityError):
    pass


class InvalidServerEphemeral(ProtocolIntegrityError):
    pass


class UnsupportedAuthVersion(ProtocolIntegrityError):
    pass


# -----------------------------------------------------------------------------
# Mutual authentication
# -----------------------------------------------------------------------------

class ServerProofMismatch(AuthError):
    pass


# -----------------------------------------------------------------------------
# Key unlock (usually a wrong password; the session is still valid)
# -----------------------------------------------------------------------------

class UnlockError(AuthError):
    pass


class MalformedKeyRing(UnlockError):
    pass


class DecryptionFailed(UnlockError):
    pass


class InvalidKeySalt(UnlockError):
    pass


# -----------------------------------------------------------------------------
# State machine misuse
# -----------------------------------------------------------------------------

class InvalidStateTransition(AuthError):
    pass
