"""OAuth 1.0a HMAC-SHA1 request signing (:rfc:`5849`).

Everything here is pure: no network access and no shared state. The only
sources of non-determinism are the nonce and the timestamp, both of which
:func:`oauth1_header` accepts as keyword arguments so that signatures can
be reproduced exactly.

Example::

    creds = OAuth1Credentials(access_token="t", token_secret="ts",
                              consumer_key="ck", consumer_secret="cs")
    header = oauth1_header("GET", "https://api.x.com/2/users/me", creds)
    # 'OAuth oauth_consumer_key="ck", oauth_nonce="...", ...'
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import secrets
import time
from typing import Iterable, Mapping, Optional, Tuple, Union
from urllib.parse import quote

from xurl.models import OAuth1Credentials

SIGNATURE_METHOD = "HMAC-SHA1"
OAUTH_VERSION = "1.0"


def percent_encode(value: str) -> str:
    """Percent-encode *value* per :rfc:`5849` section 3.6.

    Every UTF-8 byte except ASCII letters, digits and ``-._~`` is escaped
    with uppercase hex, so a space becomes ``%20`` rather than ``+``.
    """
    return quote(value, safe="-._~")


def generate_nonce() -> str:
    """Return a random 64-bit value, hex-encoded."""
    return format(secrets.randbits(64), "x")


def generate_timestamp() -> str:
    """Return the current Unix time in whole seconds as a decimal string."""
    return str(int(time.time()))


Params = Union[Mapping[str, str], Iterable[Tuple[str, str]]]


def _pairs(params: Optional[Params]) -> list[tuple[str, str]]:
    if params is None:
        return []
    if isinstance(params, Mapping):
        return list(params.items())
    return list(params)


def signature_base_string(method: str, url: str, params: Params) -> str:
    """Build the signature base string for *method*, *url* and *params*.

    *params* is a mapping or a sequence of ``(key, value)`` pairs; repeated
    keys are all signed. Each key and value is percent-encoded, the encoded
    pairs are sorted by key and then by value and joined as ``k=v`` with
    ``&``; the result is then encoded once more as the third component.
    """
    encoded = sorted((percent_encode(k), percent_encode(v)) for k, v in _pairs(params))
    parameter_string = "&".join(f"{k}={v}" for k, v in encoded)
    return "&".join(
        (method.upper(), percent_encode(url), percent_encode(parameter_string))
    )


def sign(base_string: str, consumer_secret: str, token_secret: str) -> str:
    """Return the Base64 HMAC-SHA1 of *base_string* under the OAuth1 signing key."""
    key = f"{percent_encode(consumer_secret)}&{percent_encode(token_secret)}"
    digest = hmac.new(key.encode("utf-8"), base_string.encode("utf-8"), hashlib.sha1).digest()
    return base64.b64encode(digest).decode("ascii")


def oauth1_header(
    method: str,
    url: str,
    credentials: OAuth1Credentials,
    extra_params: Optional[Params] = None,
    *,
    nonce: Optional[str] = None,
    timestamp: Optional[str] = None,
) -> str:
    """Produce a signed ``Authorization`` header value.

    Args:
        method: HTTP method; upper-cased before signing.
        url: Full request URL without query string.
        credentials: The stored OAuth1 credential set.
        extra_params: Additional parameters covered by the signature, such
            as query or form parameters, as a mapping or as ``(key, value)``
            pairs. They never appear in the header itself.
        nonce: Fixed nonce; generated when omitted.
        timestamp: Fixed Unix timestamp string; current time when omitted.

    Returns:
        ``OAuth k="v", ...`` with the ``oauth_*`` parameters in key order.
    """
    params: dict[str, str] = {
        "oauth_consumer_key": credentials.consumer_key,
        "oauth_nonce": nonce or generate_nonce(),
        "oauth_signature_method": SIGNATURE_METHOD,
        "oauth_timestamp": timestamp or generate_timestamp(),
        "oauth_token": credentials.access_token,
        "oauth_version": OAUTH_VERSION,
    }
    base_string = signature_base_string(
        method, url, list(params.items()) + _pairs(extra_params)
    )
    params["oauth_signature"] = sign(
        base_string, credentials.consumer_secret, credentials.token_secret
    )

    fields = ", ".join(
        f'{percent_encode(k)}="{percent_encode(v)}"' for k, v in sorted(params.items())
    )
    return f"OAuth {fields}"
