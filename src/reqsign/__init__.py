"""
reqsign: symmetric request signatures for HTTP APIs.

Binds an access key, a timestamp and the request parameters (plus the
body digest for POST) into one uppercase MD5 signature that client and
server compute independently from a shared secret.
"""

from reqsign.signature import (
    Credential,
    ParamSource,
    SignatureEngine,
    SigningContext,
    canonical_string,
    extract_params,
    upper_md5,
)

__version__ = "1.0.0"

__all__ = [
    "Credential",
    "ParamSource",
    "SignatureEngine",
    "SigningContext",
    "canonical_string",
    "extract_params",
    "upper_md5",
]
