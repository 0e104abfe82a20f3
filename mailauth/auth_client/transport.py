from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Literal, Mapping, Optional

import httpx

from mailauth.auth_client.config import ClientConfig
from mailauth.errors import TransportError

logger = logging.getLogger(__name__)

HttpMethod = Literal["GET", "POST", "PUT", "DELETE"]

# API-level success code carried in every JSON body
API_CODE_OK = 1000
API_CODE_MULTI_OK = 1001


@dataclass
class ApiResponse:
    status_code: int
    elapsed_ms: int
    payload: dict[str, Any]


def _normalize_headers(headers: Mapping[str, Any]) -> dict[str, str]:
    out: dict[str, str] = {}
    for k, v in headers.items():
        if v is None:
            continue
        out[str(k)] = str(v)
    return out


class AuthTransport:
    """
    JSON-over-HTTP transport for the auth endpoints.

    - one httpx.AsyncClient per request (no shared connection state between attempts)
    - network, HTTP and JSON failures surface as TransportError, never retried here
    - a body whose "Code" is not a success code is an error even on HTTP 200

    transport is forwarded to httpx; tests pass an httpx.MockTransport.
    """
    def __init__(
        self,
        config: ClientConfig,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config
        self._transport = transport

    def _base_headers(self) -> dict[str, str]:
        headers = {"Accept": "application/vnd.protonmail.v1+json"}
        if self.config.app_version:
            headers["x-pm-appversion"] = self.config.app_version
        return headers

    async def request_json(
        self,
        method: HttpMethod,
        path: str,
        body: Optional[dict[str, Any]] = None,
        *,
        headers: Optional[Mapping[str, Any]] = None,
    ) -> ApiResponse:
        req_headers = self._base_headers()
        req_headers.update(_normalize_headers(headers or {}))

        kwargs: dict[str, Any] = dict(
            method=method,
            url=path,
            headers=req_headers,
            timeout=self.config.timeout_s,
        )
        if body is not None:
            kwargs["json"] = body

        t0 = time.time()
        async with httpx.AsyncClient(
            base_url=self.config.api_url,
            verify=self.config.verify_tls,
            transport=self._transport,
        ) as client:
            try:
                resp = await client.request(**kwargs)
            except httpx.HTTPError as e:
                logger.debug("%s %s failed: %s", method, path, type(e).__name__)
                raise TransportError(f"Request error: {type(e).__name__}: {e}") from e

        elapsed_ms = int((time.time() - t0) * 1000)
        logger.debug("%s %s -> %d (%d ms)", method, path, resp.status_code, elapsed_ms)

        try:
            payload = resp.json()
        except (json.JSONDecodeError, ValueError) as e:
            raise TransportError(
                f"{method} {path}: response is not JSON",
                status_code=resp.status_code,
            ) from e

        if not isinstance(payload, dict):
            raise TransportError(
                f"{method} {path}: response is not a JSON object",
                status_code=resp.status_code,
                payload=payload,
            )

        code = payload.get("Code")
        if not resp.is_success or code not in (API_CODE_OK, API_CODE_MULTI_OK):
            message = payload.get("Error") or resp.reason_phrase or "request failed"
            raise TransportError(
                f"{method} {path}: {message}",
                status_code=resp.status_code,
                code=code if isinstance(code, int) else None,
                payload=payload,
            )

        return ApiResponse(status_code=resp.status_code, elapsed_ms=elapsed_ms, payload=payload)
