"""Request signature engine: canonicalization, MD5 digest and liveness check."""

from __future__ import annotations

import hashlib
import hmac
import io
import re
import threading
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import BinaryIO
from urllib.parse import quote_plus, unquote_plus, urlencode

from reqsign.common.logging import get_logger

logger = get_logger(__name__)

ACCESS_KEY_FIELD = "ak"
TIMESTAMP_FIELD = "accessTs"
SECRET_FIELD = "secret"

FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"

# Malformed timestamps are treated as this old, so they always fail liveness.
STALE_TIMESTAMP_SECONDS = 7 * 24 * 60 * 60

_TIMESTAMP_RE = re.compile(r"[+-]?[0-9]+")
_BAD_ESCAPE_RE = re.compile(r"%(?![0-9A-Fa-f]{2})")
_INT64_MAX = 2**63 - 1


@dataclass(frozen=True)
class Credential:
    """Access key / secret key pair shared between client and verifier."""

    access_key: str
    secret_key: str

    def __repr__(self) -> str:
        return f"Credential(access_key={self.access_key!r}, secret_key='***')"


class ParamSource(Enum):
    """Where a request method carries its signed parameters."""

    QUERY = "query"
    FORM = "form"
    UNSUPPORTED = "unsupported"

    @classmethod
    def for_method(cls, method: str) -> ParamSource:
        """Map an HTTP method to its parameter source."""
        method = method.upper()
        if method == "GET":
            return cls.QUERY
        if method == "POST":
            return cls.FORM
        return cls.UNSUPPORTED


class SigningContext:
    """
    A request as seen by the signature engine.

    The body is an optional binary stream. Reading it through
    :meth:`read_body` buffers the full payload and swaps in a fresh
    ``BytesIO`` view, so later consumers of the same context can read
    the body again.
    """

    def __init__(
        self,
        method: str,
        query_string: str = "",
        content_type: str = "",
        body: BinaryIO | bytes | None = None,
    ) -> None:
        self.method = method.upper()
        self.query_string = query_string
        self.content_type = content_type
        if isinstance(body, (bytes, bytearray)):
            body = io.BytesIO(bytes(body))
        self.body: BinaryIO | None = body
        self._body_lock = threading.Lock()

    @classmethod
    def from_params(
        cls,
        method: str,
        params: Mapping[str, str] | None = None,
        body: BinaryIO | bytes | None = None,
        content_type: str = "",
    ) -> SigningContext:
        """Build a context from already-decoded parameters."""
        query_string = urlencode(list((params or {}).items()))
        return cls(method, query_string=query_string, content_type=content_type, body=body)

    @property
    def param_source(self) -> ParamSource:
        return ParamSource.for_method(self.method)

    @property
    def is_form(self) -> bool:
        """True when the body is a URL-encoded form."""
        media_type = self.content_type.split(";", 1)[0].strip().lower()
        return media_type == FORM_CONTENT_TYPE

    def read_body(self) -> bytes:
        """
        Read the whole body and reinstall a replayable view of it.

        Unreadable streams degrade to an empty body.
        """
        with self._body_lock:
            if self.body is None:
                return b""
            try:
                data = self.body.read()
            except (OSError, ValueError) as exc:
                logger.warning("Unreadable request body", error=str(exc))
                data = b""
            if isinstance(data, str):
                data = data.encode("utf-8")
            self.body = io.BytesIO(data)
            return data


def upper_md5(data: str | bytes) -> str:
    """Return the uppercase hex MD5 digest of ``data``."""
    if isinstance(data, str):
        data = _raw_bytes(data)
    return hashlib.md5(data).hexdigest().upper()


def _raw_bytes(text: str) -> bytes:
    return text.encode("utf-8", "surrogateescape")


def parse_query(text: str) -> list[tuple[str, str]]:
    """
    Decode a URL-encoded query or form string into name/value pairs.

    Bytes that are not valid UTF-8 survive as surrogate escapes, so they
    re-encode to the same percent escapes. Segments containing ``;`` or a
    malformed ``%`` escape are skipped.
    """
    pairs: list[tuple[str, str]] = []
    for segment in text.split("&"):
        if not segment or ";" in segment or _BAD_ESCAPE_RE.search(segment):
            continue
        key, _, value = segment.partition("=")
        pairs.append(
            (
                unquote_plus(key, errors="surrogateescape"),
                unquote_plus(value, errors="surrogateescape"),
            )
        )
    return pairs


def _first_values(pairs: list[tuple[str, str]]) -> dict[str, str]:
    params: dict[str, str] = {}
    for key, value in pairs:
        params.setdefault(key, value)
    return {key: value for key, value in params.items() if key and value}


def extract_params(context: SigningContext) -> dict[str, str]:
    """
    Collect the signed parameters of a request.

    GET reads the URL query string. POST reads the URL-encoded form body
    (when the content type says so) followed by the query string, so a
    body value wins over a query value with the same name. Other methods
    carry no signed parameters. Only the first value of a repeated
    parameter is kept; empty names and empty values are dropped.
    """
    source = context.param_source
    if source is ParamSource.QUERY:
        pairs = parse_query(context.query_string)
    elif source is ParamSource.FORM:
        pairs = []
        if context.is_form:
            form = context.read_body().decode("utf-8", errors="surrogateescape")
            pairs.extend(parse_query(form))
        pairs.extend(parse_query(context.query_string))
    else:
        logger.debug("Unsupported method for signed parameters", method=context.method)
        return {}
    return _first_values(pairs)


def body_digest(context: SigningContext) -> str:
    """Digest of a POST body, or an empty string when there is none to sign."""
    if context.param_source is not ParamSource.FORM or context.is_form:
        return ""
    body = context.read_body()
    if not body:
        return ""
    return upper_md5(body)


def canonical_string(
    params: Mapping[str, str],
    access_key: str,
    timestamp: str,
    secret_key: str,
    body_digest: str = "",
) -> str:
    """
    Build the string that gets digested into a signature.

    Format: ``k1=v1&k2=v2&...&[BODYMD5&]secret=SECRETMD5`` with keys in
    byte-wise ascending order and values percent-encoded.
    """
    fields = dict(params)
    fields[ACCESS_KEY_FIELD] = access_key
    fields[TIMESTAMP_FIELD] = timestamp

    parts = [
        f"{key}={quote_plus(fields[key], safe='', errors='surrogateescape')}&"
        for key in sorted(fields, key=_raw_bytes)
    ]
    if body_digest:
        parts.append(f"{body_digest}&")
    parts.append(f"{SECRET_FIELD}={upper_md5(secret_key)}")
    return "".join(parts)


def parse_timestamp(value: str, now: float) -> int:
    """Parse a unix-seconds timestamp, falling back to a stale sentinel."""
    text = value if isinstance(value, str) else ""
    if _TIMESTAMP_RE.fullmatch(text):
        parsed = int(text)
        if -_INT64_MAX - 1 <= parsed <= _INT64_MAX:
            return parsed
    logger.debug("Malformed access timestamp, treating as stale", timestamp=value)
    return int(now) - STALE_TIMESTAMP_SECONDS


class SignatureEngine:
    """Signs and verifies requests for a single credential."""

    def __init__(
        self,
        access_key: str,
        secret_key: str,
        access_ts: str,
        live_minutes: int = 2,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """
        Initialize the engine.

        Args:
            access_key: Public access key transmitted with the request
            secret_key: Shared secret, never transmitted
            access_ts: Unix-seconds timestamp string the request was signed at
            live_minutes: Liveness window for timestamps, in minutes
            clock: Source of the current unix time
        """
        self._credential = Credential(access_key=access_key, secret_key=secret_key)
        self._access_ts = access_ts
        self._live_minutes = live_minutes
        self._clock = clock

    @classmethod
    def for_credential(
        cls,
        credential: Credential,
        access_ts: str,
        live_minutes: int = 2,
        clock: Callable[[], float] = time.time,
    ) -> SignatureEngine:
        return cls(
            credential.access_key,
            credential.secret_key,
            access_ts,
            live_minutes=live_minutes,
            clock=clock,
        )

    @property
    def access_key(self) -> str:
        return self._credential.access_key

    @property
    def access_ts(self) -> str:
        return self._access_ts

    @property
    def live_minutes(self) -> int:
        return self._live_minutes

    def string_to_sign(self, context: SigningContext) -> str:
        """Return the canonical pre-digest string for ``context``."""
        return canonical_string(
            extract_params(context),
            self._credential.access_key,
            self._access_ts,
            self._credential.secret_key,
            body_digest=body_digest(context),
        )

    def sign(self, context: SigningContext) -> str:
        """Compute the signature for ``context``."""
        signature = upper_md5(self.string_to_sign(context))
        logger.debug(
            "Computed request signature",
            method=context.method,
            access_key=self.access_key,
        )
        return signature

    def verify(self, context: SigningContext, candidate: str) -> bool:
        """Check a client-supplied signature against the recomputed one."""
        if not isinstance(candidate, str):
            return False
        expected = self.sign(context)
        return hmac.compare_digest(expected.encode("ascii"), _raw_bytes(candidate))

    def elapsed_minutes(self, timestamp: str) -> int:
        """Whole minutes elapsed since ``timestamp``."""
        now = self._clock()
        return int((now - parse_timestamp(timestamp, now)) / 60)

    def is_expired(self, timestamp: str) -> bool:
        """True when ``timestamp`` is older than the liveness window."""
        return self.elapsed_minutes(timestamp) > self._live_minutes
