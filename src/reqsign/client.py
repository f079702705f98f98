"""Client-side signing of outbound requests."""

from __future__ import annotations

import json as jsonlib
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlencode

import aiohttp

from reqsign.common.logging import get_logger
from reqsign.common.settings import Settings
from reqsign.signature import FORM_CONTENT_TYPE, Credential, SignatureEngine, SigningContext

logger = get_logger(__name__)


class SigningClientError(Exception):
    """Error sending a signed request."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


@dataclass(frozen=True)
class SignedRequest:
    """Signature and headers for one outbound request."""

    timestamp: str
    signature: str
    headers: dict[str, str]


def sign_request(
    credential: Credential,
    method: str,
    settings: Settings,
    params: Mapping[str, str] | None = None,
    body: bytes | None = None,
    content_type: str = "",
    timestamp: str | None = None,
    clock: Callable[[], float] = time.time,
) -> SignedRequest:
    """
    Sign a request the way the server-side middleware will check it.

    Args:
        credential: Access/secret key pair
        method: HTTP method
        settings: Settings carrying the header names
        params: Query parameters sent with the request
        body: Raw request body
        content_type: Content type of the body
        timestamp: Unix-seconds timestamp (defaults to now)
        clock: Source of the current unix time

    Returns:
        SignedRequest with the headers to attach
    """
    access_ts = timestamp if timestamp is not None else str(int(clock()))
    context = SigningContext.from_params(method, params, body=body, content_type=content_type)
    engine = SignatureEngine.for_credential(credential, access_ts)
    signature = engine.sign(context)

    headers = {
        settings.access_key_header: credential.access_key,
        settings.timestamp_header: access_ts,
        settings.signature_header: signature,
    }
    if content_type:
        headers["Content-Type"] = content_type
    return SignedRequest(timestamp=access_ts, signature=signature, headers=headers)


def _encode_body(
    data: Mapping[str, str] | bytes | str | None,
    json: Any,
) -> tuple[bytes | None, str]:
    if json is not None:
        return jsonlib.dumps(json, separators=(",", ":")).encode("utf-8"), "application/json"
    if isinstance(data, Mapping):
        return urlencode(list(data.items())).encode("utf-8"), FORM_CONTENT_TYPE
    if isinstance(data, str):
        return data.encode("utf-8"), "text/plain; charset=utf-8"
    if data is not None:
        return bytes(data), "application/octet-stream"
    return None, ""


class SigningClient:
    """HTTP client that signs every request with one credential."""

    def __init__(
        self,
        credential: Credential,
        settings: Settings,
        base_url: str | None = None,
    ):
        """
        Initialize the signing client.

        Args:
            credential: Access/secret key pair used for every request
            settings: Application settings
            base_url: Server base URL (defaults to settings.client_base_url)
        """
        self._credential = credential
        self._settings = settings
        self._base_url = (base_url or settings.client_base_url).rstrip("/")
        self._timeout = aiohttp.ClientTimeout(total=settings.client_timeout)
        self._session: aiohttp.ClientSession | None = None

    async def __aenter__(self) -> "SigningClient":
        """Enter async context."""
        self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Exit async context."""
        if self._session:
            await self._session.close()
            self._session = None

    def _ensure_session(self) -> aiohttp.ClientSession:
        """Ensure session exists."""
        if not self._session:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self._session

    async def request(
        self,
        method: str,
        path: str,
        params: Mapping[str, str] | None = None,
        data: Mapping[str, str] | bytes | str | None = None,
        json: Any = None,
    ) -> Any:
        """
        Send a signed request.

        Returns:
            Decoded JSON for JSON responses, text otherwise

        Raises:
            SigningClientError: On transport failure or a non-2xx response
        """
        body, content_type = _encode_body(data, json)
        signed = sign_request(
            self._credential,
            method,
            self._settings,
            params=params,
            body=body,
            content_type=content_type,
        )
        url = f"{self._base_url}/{path.lstrip('/')}"
        logger.debug("Sending signed request", method=method, url=url)

        session = self._ensure_session()
        try:
            response = await session.request(
                method,
                url,
                params=dict(params) if params else None,
                data=body,
                headers=signed.headers,
            )
        except aiohttp.ClientError as e:
            raise SigningClientError(f"Request failed: {e}") from e

        async with response:
            if response.status >= 400:
                text = await response.text()
                raise SigningClientError(
                    f"{method} {path} failed: {text}",
                    response.status,
                )
            if response.content_type == "application/json":
                return await response.json()
            return await response.text()

    async def get(self, path: str, params: Mapping[str, str] | None = None) -> Any:
        return await self.request("GET", path, params=params)

    async def post(
        self,
        path: str,
        params: Mapping[str, str] | None = None,
        data: Mapping[str, str] | bytes | str | None = None,
        json: Any = None,
    ) -> Any:
        return await self.request("POST", path, params=params, data=data, json=json)
