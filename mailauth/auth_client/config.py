from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Callable, Mapping, Optional

from dotenv import load_dotenv

DEFAULT_API_URL = "https://api.protonmail.ch"


# ----------------------------
# Secrets
# ----------------------------

class SecretResolver:
    """
    Flexible secret resolver.
    Resolution order:
      1) explicit mapping passed at init
      2) os.environ
      3) optional fallback callable
    """
    def __init__(
        self,
        mapping: Optional[Mapping[str, str]] = None,
        fallback: Optional[Callable[[str], Optional[str]]] = None,
        auto_dotenv: bool = False,
        dotenv_path: Optional[str] = None,
        dotenv_override: bool = False,
    ):
        if auto_dotenv:
            load_dotenv(dotenv_path=dotenv_path, override=dotenv_override)

        self._mapping = dict(mapping or {})
        self._fallback = fallback

    def get(self, name: str) -> Optional[str]:
        if name in self._mapping:
            return self._mapping[name]
        if name in os.environ:
            return os.environ[name]
        if self._fallback is not None:
            return self._fallback(name)
        return None

    def require(self, name: str) -> str:
        v = self.get(name)
        if v is None:
            raise KeyError(f"Missing required secret: {name}")
        return v


def _as_bool(value: str) -> bool:
    return value.strip().lower() not in ("0", "false", "no", "off", "")


# ----------------------------
# Client config
# ----------------------------

@dataclass(frozen=True)
class ClientConfig:
    client_id: str
    client_secret: str = ""
    api_url: str = DEFAULT_API_URL
    app_version: Optional[str] = None
    timeout_s: Optional[float] = 30.0
    verify_tls: bool = True

    # Armored public key that signs SRP moduli; None means the built-in key
    modulus_key: Optional[str] = None

    @classmethod
    def from_env(cls, secrets: Optional[SecretResolver] = None) -> "ClientConfig":
        """
        Build a config from MAILAUTH_* names.

        MAILAUTH_CLIENT_ID is required. MAILAUTH_MODULUS_KEY_FILE, when set,
        points at an armored key that replaces the built-in modulus key.
        """
        secrets = secrets or SecretResolver()

        modulus_key: Optional[str] = None
        key_path = secrets.get("MAILAUTH_MODULUS_KEY_FILE")
        if key_path:
            with open(key_path, "r", encoding="utf-8") as f:
                modulus_key = f.read()

        timeout_raw = secrets.get("MAILAUTH_TIMEOUT_S")
        verify_raw = secrets.get("MAILAUTH_VERIFY_TLS")

        return cls(
            client_id=secrets.require("MAILAUTH_CLIENT_ID"),
            client_secret=secrets.get("MAILAUTH_CLIENT_SECRET") or "",
            api_url=secrets.get("MAILAUTH_API_URL") or DEFAULT_API_URL,
            app_version=secrets.get("MAILAUTH_APP_VERSION"),
            timeout_s=float(timeout_raw) if timeout_raw else 30.0,
            verify_tls=_as_bool(verify_raw) if verify_raw is not None else True,
            modulus_key=modulus_key,
        )
