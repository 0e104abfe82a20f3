"""
Domain values produced and consumed by the auth flow.

These are separate from the wire DTOs in auth_client.wire:
they are built through explicit mapping functions and never carry raw
protocol fields such as the server proof.
"""

from __future__ import annotations

import dataclasses
import datetime as _dt
from dataclasses import dataclass, field
from enum import IntEnum


class PasswordMode(IntEnum):
    # Wire values used by the service
    SINGLE = 1
    TWO = 2


@dataclass(frozen=True)
class AuthParameters:
    """
    SRP parameters returned by /auth/info for one username.

    - version: password hashing version (0-4)
    - modulus: PGP clear-signed, base64 little-endian modulus
    - server_ephemeral: base64 B
    - salt: base64 SRP salt
    - srp_session: opaque server handle for this handshake
    - username: account the parameters were fetched for
    - two_factor: non-zero when the account requires a second factor
    """
    version: int
    modulus: str
    server_ephemeral: str
    salt: str
    srp_session: str
    username: str = ""
    two_factor: int = 0

    @property
    def requires_two_factor(self) -> bool:
        return bool(self.two_factor)


@dataclass(frozen=True)
class SessionCredentials:
    """
    Result of a verified handshake.

    Token and key fields are hidden from repr so the value can be logged safely.
    Refreshing tokens yields a new value (see with_refreshed_tokens).
    """
    uid: str
    access_token: str = field(repr=False)
    refresh_token: str = field(repr=False)
    expires_in: _dt.timedelta
    password_mode: PasswordMode
    private_key: str = field(repr=False, default="")
    key_salt: str = field(repr=False, default="")
    token_type: str = "Bearer"
    scope: str = ""
    event_id: str = ""
    issued_at: _dt.datetime = field(
        default_factory=lambda: _dt.datetime.now(_dt.timezone.utc).replace(microsecond=0)
    )

    @property
    def expires_at(self) -> _dt.datetime:
        return self.issued_at + self.expires_in

    def is_expired(self, now: _dt.datetime | None = None) -> bool:
        now_dt = now or _dt.datetime.now(_dt.timezone.utc)
        return now_dt >= self.expires_at

    def with_refreshed_tokens(
        self,
        *,
        access_token: str,
        refresh_token: str,
        expires_in: _dt.timedelta,
        token_type: str | None = None,
        scope: str | None = None,
    ) -> "SessionCredentials":
        return dataclasses.replace(
            self,
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=expires_in,
            token_type=token_type or self.token_type,
            scope=self.scope if scope is None else scope,
            issued_at=_dt.datetime.now(_dt.timezone.utc).replace(microsecond=0),
        )
