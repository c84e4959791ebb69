"""
Webhook signature validation for board provider callbacks.

Trello signs each callback with base64(HMAC-SHA1(app_secret, body + callbackURL))
in the X-Trello-Webhook header. Without a configured secret the check is skipped.
"""
import base64
import hashlib
import hmac
import logging

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Trello-Webhook"


def compute_trello_signature(secret: str, body: bytes, callback_url: str) -> str:
    digest = hmac.new(
        secret.encode("utf-8"),
        body + callback_url.encode("utf-8"),
        hashlib.sha1,
    ).digest()
    return base64.b64encode(digest).decode("ascii")


def validate_trello_signature(
    secret: str,
    signature: str,
    body: bytes,
    callback_url: str,
) -> bool:
    """
    Validate a provider callback signature.
    Returns True if valid or if no secret is configured.
    """
    if not secret:
        return True
    if not signature:
        logger.warning("Missing %s header", SIGNATURE_HEADER)
        return False

    try:
        expected = compute_trello_signature(secret, body, callback_url)
        return hmac.compare_digest(expected, signature.strip())
    except Exception as e:
        logger.error("Trello signature validation error: %s", str(e))
        return False


def compute_payload_hash(body: bytes) -> str:
    """SHA-256 of the raw payload for the audit trail."""
    return hashlib.sha256(body).hexdigest()
