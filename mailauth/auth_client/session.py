from __future__ import annotations

import asyncio
from typing import Optional

from mailauth.key_unlock import UnlockedKeyRing
from mailauth.models import SessionCredentials


class Session:
    """
    Owned client state: who is logged in and with which keys.

    Passed by reference into AuthClient operations. Every mutation goes through
    commit()/replace_credentials()/clear() while the caller holds `lock`, so two
    concurrent unlocks on the same session cannot lose an update.
    """
    def __init__(self) -> None:
        self.lock = asyncio.Lock()
        self._credentials: Optional[SessionCredentials] = None
        self._key_ring: Optional[UnlockedKeyRing] = None

    def __repr__(self) -> str:
        return f"Session(uid={self.uid!r}, unlocked={self.is_unlocked})"

    @property
    def credentials(self) -> Optional[SessionCredentials]:
        return self._credentials

    @property
    def key_ring(self) -> Optional[UnlockedKeyRing]:
        return self._key_ring

    @property
    def uid(self) -> Optional[str]:
        return self._credentials.uid if self._credentials else None

    @property
    def access_token(self) -> Optional[str]:
        return self._credentials.access_token if self._credentials else None

    @property
    def is_unlocked(self) -> bool:
        return self._credentials is not None and self._key_ring is not None

    def _require_locked(self) -> None:
        if not self.lock.locked():
            raise RuntimeError("Session mutation requires holding session.lock")

    def commit(self, credentials: SessionCredentials, key_ring: UnlockedKeyRing) -> None:
        self._require_locked()
        self._credentials = credentials
        self._key_ring = key_ring

    def replace_credentials(self, credentials: SessionCredentials) -> None:
        self._require_locked()
        if self._credentials is None:
            raise RuntimeError("No active session to refresh")
        self._credentials = credentials

    def clear(self) -> None:
        self._require_locked()
        self._credentials = None
        self._key_ring = None
