"""HMAC signature validation for Hook0 webhooks.

This module provides cryptographic signature validation for incoming webhook
requests. Hook0 signs a payload assembled from a timestamp, a list of request
header names, their values and the raw body, and sends the result in the
``X-Hook0-Signature`` header:

    t=<unix seconds>,h=<space separated header names>,v1=<hex HMAC-SHA256>

Security Note:
    verify_webhook_signature MUST be called on the raw request bytes before
    the payload is parsed. Return an error immediately if validation fails.
"""

import hashlib
import hmac
import time
from collections.abc import Mapping


def parse_signature_header(signature_header: str) -> dict[str, str] | None:
    """Split a signature header into its ``t``, ``h`` and ``v1`` elements.

    Args:
        signature_header: Raw header value

    Returns:
        Mapping with keys "t", "h" and "v1", or None if any element is missing
    """
    elements: dict[str, str] = {}
    for part in signature_header.split(","):
        key, sep, value = part.strip().partition("=")
        if sep:
            elements.setdefault(key, value)

    if not all(elements.get(key) for key in ("t", "h", "v1")):
        return None
    return elements


def _signed_payload(
    timestamp: str, header_names: str, headers: Mapping[str, str], raw_body: bytes
) -> bytes:
    lowered = {name.lower(): value for name, value in headers.items()}
    header_values = ".".join(lowered.get(name.lower(), "") for name in header_names.split(" "))
    return f"{timestamp}.{header_names}.{header_values}.".encode("utf-8") + raw_body


def compute_signature(
    secret: str, timestamp: str, header_names: str, headers: Mapping[str, str], raw_body: bytes
) -> str:
    """Compute the hex HMAC-SHA256 Hook0 signature for a request.

    Args:
        secret: Shared webhook secret
        timestamp: Unix timestamp string from the ``t`` element
        header_names: Space separated header names from the ``h`` element
        headers: Request headers (case-insensitive lookup)
        raw_body: Exact request body bytes

    Returns:
        Lowercase hex digest
    """
    return hmac.new(
        key=secret.encode("utf-8"),
        msg=_signed_payload(timestamp, header_names, headers, raw_body),
        digestmod=hashlib.sha256,
    ).hexdigest()


def sign_webhook_payload(
    raw_body: bytes,
    secret: str,
    headers: Mapping[str, str] | None = None,
    header_names: str = "content-type",
    timestamp: int | None = None,
) -> str:
    """Build a valid ``X-Hook0-Signature`` header value.

    Used by local tooling and tests to produce deliveries the verifier accepts.

    Args:
        raw_body: Exact request body bytes
        secret: Shared webhook secret
        headers: Request headers that will accompany the body
        header_names: Space separated names of headers covered by the signature
        timestamp: Unix timestamp (defaults to now)

    Returns:
        Header value in ``t=...,h=...,v1=...`` form
    """
    ts = str(int(time.time()) if timestamp is None else timestamp)
    signature = compute_signature(secret, ts, header_names, headers or {}, raw_body)
    return f"t={ts},h={header_names},v1={signature}"


def verify_webhook_signature(
    raw_body: bytes,
    signature_header: str | None,
    secret: str | None,
    headers: Mapping[str, str],
    max_age_seconds: int | None = 300,
    now: float | None = None,
) -> bool:
    """Validate a Hook0 webhook signature using HMAC-SHA256.

    Fails closed: a missing header, missing secret, malformed header or
    non-numeric timestamp is reported as invalid, never raised.

    Args:
        raw_body: Raw request body bytes (NOT parsed JSON). Must be the exact
            bytes received from the request, before any parsing or transformation.
        signature_header: Value of the X-Hook0-Signature header
        secret: Shared webhook secret
        headers: Request headers, used to rebuild the signed header values
        max_age_seconds: Reject signatures whose timestamp is further than this
            from ``now`` (None disables the replay window)
        now: Current unix time (defaults to time.time())

    Returns:
        True if signature is valid (request is authentic), False otherwise.

    Security:
        - Uses hmac.compare_digest() for constant-time comparison to prevent
          timing attacks. Never use == for signature comparison.
        - The timestamp is covered by the signature, so the replay window
          cannot be extended by rewriting ``t``.
    """
    if not signature_header or not secret:
        return False

    elements = parse_signature_header(signature_header)
    if elements is None:
        return False

    timestamp = elements["t"]
    if not (timestamp.isascii() and timestamp.isdigit()):
        return False

    expected = compute_signature(secret, timestamp, elements["h"], headers, raw_body)

    # Normalize to lowercase (hexdigest() is lowercase, accept uppercase input)
    provided = elements["v1"].strip().lower().encode("utf-8")
    if not hmac.compare_digest(expected.lower().encode("utf-8"), provided):
        return False

    if max_age_seconds:
        current = time.time() if now is None else now
        if abs(current - int(timestamp)) > max_age_seconds:
            return False

    return True
