"""
Utility functions shared by the webhook API and the pipeline.
"""

import hmac
import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime, timezone

logger = logging.getLogger(__name__)

GROUP_SERVER = "g.us"
USER_SERVER = "s.whatsapp.net"


def verify_hmac_signature(body: bytes, signature: str, secret: str) -> bool:
    """
    Verify HMAC-SHA256 signature.

    Args:
        body: Raw request body bytes
        signature: Hex-encoded signature from X-Signature header
        secret: WEBHOOK_SECRET

    Returns:
        True if signature is valid, False otherwise
    """
    logger.debug(f"Verifying HMAC signature, body length: {len(body)} bytes")

    expected_signature = hmac.new(
        secret.encode("utf-8"),
        body,
        hashlib.sha256
    ).hexdigest()

    # Constant-time comparison
    is_valid = hmac.compare_digest(expected_signature, signature)
    logger.info(f"HMAC signature verification: {'valid' if is_valid else 'invalid'}")

    return is_valid


@dataclass(frozen=True)
class JID:
    """A chat identifier of the form ``user@server``."""

    user: str
    server: str

    @property
    def is_group(self) -> bool:
        return self.server == GROUP_SERVER

    def __str__(self) -> str:
        return f"{self.user}@{self.server}"


def parse_jid(value: str) -> JID:
    """
    Parse a chat identifier.

    A device suffix (``user:device@server``) is dropped from the user part.

    Raises:
        ValueError: if the value has no ``@`` or an empty server part
    """
    if not value or "@" not in value:
        raise ValueError(f"invalid JID: {value!r}")
    user, server = value.split("@", 1)
    if not server:
        raise ValueError(f"invalid JID: {value!r}")
    user = user.split(":", 1)[0]
    return JID(user=user, server=server)


def recipient_jid(recipient: str) -> JID:
    """Recipient as given to the send API: a full JID or a bare phone number."""
    if "@" in recipient:
        return parse_jid(recipient)
    return JID(user=recipient, server=USER_SERVER)


def extract_direct_path(url: str) -> str:
    """
    Derive the media direct path from a CDN URL.

    ``https://mmg.whatsapp.net/v/t62.7118-24/abc.enc?ccb=11-4`` becomes
    ``/v/t62.7118-24/abc.enc``. URLs without a ``.net/`` host are returned as is.
    """
    parts = url.split(".net/", 1)
    if len(parts) < 2:
        return url
    return "/" + parts[1].split("?", 1)[0]


def compact_timestamp(moment: datetime) -> str:
    """Timestamp used in generated filenames, e.g. ``20250115_100000``."""
    return moment.strftime("%Y%m%d_%H%M%S")


def to_iso_utc(moment: datetime) -> str:
    """ISO-8601 UTC string with Z suffix. Naive datetimes are taken as UTC."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
