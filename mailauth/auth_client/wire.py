"""
Wire DTOs for the auth endpoints and their mapping to domain values.

Field names follow the service's JSON exactly (via aliases). Responses ignore
unknown fields. Domain objects are only ever built through the to_* functions
below, so raw protocol fields (ServerProof, SRPSession, ...) never leak into
long-lived values.
"""

from __future__ import annotations

import datetime as _dt
import secrets
from typing import Any, Optional, Type, TypeVar

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from mailauth.errors import TransportError
from mailauth.models import AuthParameters, PasswordMode, SessionCredentials

REFRESH_REDIRECT_URI = "https://protonmail.ch"

_Resp = TypeVar("_Resp", bound=BaseModel)


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


# ----------------------------
# /auth/info
# ----------------------------

class AuthInfoRequest(_WireModel):
    client_id: str = Field(alias="ClientID")
    client_secret: str = Field(default="", alias="ClientSecret")
    username: str = Field(alias="Username")


class AuthInfoResponse(_WireModel):
    code: int = Field(alias="Code")
    version: int = Field(alias="Version")
    modulus: str = Field(alias="Modulus")
    server_ephemeral: str = Field(alias="ServerEphemeral")
    salt: str = Field(default="", alias="Salt")
    srp_session: str = Field(alias="SRPSession")
    two_factor: int = Field(default=0, alias="TwoFactor")


# ----------------------------
# /auth
# ----------------------------

class AuthRequest(_WireModel):
    client_id: str = Field(alias="ClientID")
    client_secret: str = Field(default="", alias="ClientSecret")
    username: str = Field(alias="Username")
    srp_session: str = Field(alias="SRPSession")
    client_ephemeral: str = Field(alias="ClientEphemeral")
    client_proof: str = Field(alias="ClientProof")
    two_factor_code: str = Field(default="", alias="TwoFactorCode")


class AuthResponse(_WireModel):
    code: int = Field(alias="Code")
    access_token: str = Field(alias="AccessToken")
    token_type: str = Field(default="Bearer", alias="TokenType")
    expires_in: int = Field(default=0, alias="ExpiresIn")
    scope: str = Field(default="", alias="Scope")
    uid: str = Field(validation_alias=AliasChoices("UID", "Uid"), serialization_alias="UID")
    refresh_token: str = Field(alias="RefreshToken")
    event_id: str = Field(default="", alias="EventID")
    password_mode: PasswordMode = Field(default=PasswordMode.SINGLE, alias="PasswordMode")
    server_proof: str = Field(alias="ServerProof")
    private_key: str = Field(default="", alias="PrivateKey")
    key_salt: str = Field(default="", alias="KeySalt")


# ----------------------------
# /auth/refresh
# ----------------------------

class AuthRefreshRequest(_WireModel):
    client_id: str = Field(alias="ClientID")
    uid: str = Field(alias="Uid")
    refresh_token: str = Field(alias="RefreshToken")
    response_type: str = Field(default="token", alias="ResponseType")
    grant_type: str = Field(default="refresh_token", alias="GrantType")
    redirect_uri: str = Field(default=REFRESH_REDIRECT_URI, alias="RedirectURI")
    state: str = Field(default_factory=lambda: secrets.token_urlsafe(24), alias="State")


class AuthRefreshResponse(_WireModel):
    code: int = Field(alias="Code")
    access_token: str = Field(alias="AccessToken")
    token_type: str = Field(default="Bearer", alias="TokenType")
    expires_in: int = Field(default=0, alias="ExpiresIn")
    scope: Optional[str] = Field(default=None, alias="Scope")
    uid: str = Field(default="", validation_alias=AliasChoices("UID", "Uid"))
    refresh_token: str = Field(alias="RefreshToken")


# ----------------------------
# Parsing + mapping
# ----------------------------

def parse_response(model: Type[_Resp], payload: Any) -> _Resp:
    try:
        return model.model_validate(payload)
    except ValidationError as e:
        raise TransportError(f"malformed {model.__name__}: {e.error_count()} invalid field(s)") from e


def to_auth_parameters(resp: AuthInfoResponse, username: str) -> AuthParameters:
    return AuthParameters(
        version=resp.version,
        modulus=resp.modulus,
        server_ephemeral=resp.server_ephemeral,
        salt=resp.salt,
        srp_session=resp.srp_session,
        username=username,
        two_factor=resp.two_factor,
    )


def to_session_credentials(resp: AuthResponse) -> SessionCredentials:
    # ServerProof stays on the DTO
    return SessionCredentials(
        uid=resp.uid,
        access_token=resp.access_token,
        refresh_token=resp.refresh_token,
        expires_in=_dt.timedelta(seconds=resp.expires_in),
        password_mode=resp.password_mode,
        private_key=resp.private_key,
        key_salt=resp.key_salt,
        token_type=resp.token_type,
        scope=resp.scope,
        event_id=resp.event_id,
    )


def refreshed_credentials(current: SessionCredentials, resp: AuthRefreshResponse) -> SessionCredentials:
    return current.with_refreshed_tokens(
        access_token=resp.access_token,
        refresh_token=resp.refresh_token,
        expires_in=_dt.timedelta(seconds=resp.expires_in),
        token_type=resp.token_type,
        scope=resp.scope,
    )
