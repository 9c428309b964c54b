"""
Webhook Signature Verification

Pure functions over the raw request body. Routers call these before the
body is parsed as JSON and before any database access, so an unsigned or
forged delivery never reaches the ingestion path.

Terra: header `terra-signature: t=<unix_ts>,v1=<hex>`, HMAC-SHA256 over
`timestamp + raw_body` (the `timestamp.raw_body` form is also accepted).

Whoop: headers `X-WHOOP-Signature` (base64) and
`X-WHOOP-Signature-Timestamp`, HMAC-SHA256 over `timestamp + raw_body`
keyed with the OAuth client secret.
"""

import base64
import hashlib
import hmac
import logging
from enum import Enum
from typing import Dict, Optional, Union

logger = logging.getLogger(__name__)


class SignatureCheck(str, Enum):
    VALID = "valid"
    MISSING_HEADER = "missing_header"
    MALFORMED_HEADER = "malformed_header"
    NOT_CONFIGURED = "not_configured"
    MISMATCH = "mismatch"

    @property
    def ok(self) -> bool:
        return self is SignatureCheck.VALID


def _as_bytes(raw_body: Union[bytes, str]) -> bytes:
    if isinstance(raw_body, str):
        return raw_body.encode("utf-8")
    return raw_body


def parse_signature_header(header: str) -> Dict[str, str]:
    """Split `k1=v1,k2=v2` into a dict. Pieces without '=' are dropped."""
    parts: Dict[str, str] = {}
    for piece in header.split(","):
        if "=" not in piece:
            continue
        key, _, value = piece.partition("=")
        key = key.strip()
        value = value.strip()
        if key and value:
            parts[key] = value
    return parts


def compute_hex_signature(secret: str, message: Union[bytes, str]) -> str:
    return hmac.new(
        secret.encode("utf-8"),
        _as_bytes(message),
        hashlib.sha256
    ).hexdigest()


def verify_terra_signature(
    raw_body: Union[bytes, str],
    header: Optional[str],
    secret: Optional[str],
) -> SignatureCheck:
    """
    Verify a Terra webhook delivery.

    Args:
        raw_body: Request body exactly as received
        header: Value of the `terra-signature` header
        secret: Shared signing secret

    Returns:
        SignatureCheck describing the outcome; only VALID should be accepted
    """
    if not header:
        logger.warning("Terra webhook missing signature header")
        return SignatureCheck.MISSING_HEADER

    parts = parse_signature_header(header)
    timestamp = parts.get("t")
    provided = parts.get("v1")
    if not timestamp or not provided:
        logger.warning("Terra webhook signature header malformed")
        return SignatureCheck.MALFORMED_HEADER

    if not secret:
        logger.error("TERRA_SIGNING_SECRET not set, cannot verify webhook signature")
        return SignatureCheck.NOT_CONFIGURED

    # HMAC over the exact bytes received; the body is never decoded here
    body = _as_bytes(raw_body)
    prefix = timestamp.encode("utf-8")
    provided = provided.lower()
    computed = compute_hex_signature(secret, prefix + body)
    if hmac.compare_digest(provided.encode("utf-8"), computed.encode("utf-8")):
        return SignatureCheck.VALID

    # Older deliveries were signed with a '.' separator
    computed_dotted = compute_hex_signature(secret, prefix + b"." + body)
    if hmac.compare_digest(provided.encode("utf-8"), computed_dotted.encode("utf-8")):
        return SignatureCheck.VALID

    logger.warning(
        "Terra webhook signature mismatch",
        extra={
            "extra_fields": {
                "provided_signature": provided,
                "computed_signature": computed,
                "signature_timestamp": timestamp,
                "body_length": len(body),
            }
        },
    )
    return SignatureCheck.MISMATCH


def verify_whoop_signature(
    raw_body: Union[bytes, str],
    signature: Optional[str],
    timestamp: Optional[str],
    secret: Optional[str],
) -> SignatureCheck:
    """Verify a Whoop webhook delivery (base64 HMAC-SHA256 over timestamp + body)."""
    if not secret:
        return SignatureCheck.NOT_CONFIGURED

    if not signature or not timestamp:
        logger.warning("Whoop webhook missing signature headers")
        return SignatureCheck.MISSING_HEADER

    digest = hmac.new(
        secret.encode("utf-8"),
        timestamp.encode("utf-8") + _as_bytes(raw_body),
        hashlib.sha256
    ).digest()
    computed = base64.b64encode(digest).decode("ascii")

    if hmac.compare_digest(signature.strip().encode("utf-8"), computed.encode("ascii")):
        return SignatureCheck.VALID

    logger.warning(
        "Whoop webhook signature mismatch",
        extra={"extra_fields": {"signature_timestamp": timestamp}},
    )
    return SignatureCheck.MISMATCH
