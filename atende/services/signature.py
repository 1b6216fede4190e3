"""Webhook signature check (x-hub-signature-256, HMAC SHA-256 of the raw body)."""

import hashlib
import hmac
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Optional


@dataclass
class SignatureResult:
    valid: bool
    skipped: bool = False
    error: Optional[str] = None


def verify_signature(raw_body: bytes, headers: Mapping[str, str], secret: Optional[str]) -> SignatureResult:
    """Validate the signature; without a configured secret the check is skipped."""
    if not secret:
        return SignatureResult(valid=True, skipped=True)

    signature = headers.get("x-hub-signature-256")
    if not signature:
        return SignatureResult(valid=False, error="missing_signature")
    if not signature.startswith("sha256="):
        return SignatureResult(valid=False, error="invalid_signature_format")

    expected = signature.split("=", 1)[1]
    digest = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()
    if not hmac.compare_digest(digest, expected):
        return SignatureResult(valid=False, error="signature_mismatch")
    return SignatureResult(valid=True)
