"""Outbound message payload helpers.

Payloads are handed to the transport untouched; these helpers only build
the shapes the messaging engine expects for text and image messages.
"""

import base64
import binascii
import re
from typing import Any, Optional

from paird.errors import MessageError

DEFAULT_RECIPIENT_SUFFIX = "@s.whatsapp.net"

_NON_DIGITS = re.compile(r"\D")


def recipient_address(phone: str, suffix: str = DEFAULT_RECIPIENT_SUFFIX) -> str:
    """Build a transport address from a phone number.

    Formatting characters are stripped: "+1 (555) 010-0000" becomes
    "15550100000@s.whatsapp.net". Addresses that already contain "@" are
    returned unchanged.

    Raises:
        MessageError: If no digits remain.
    """
    if "@" in phone:
        return phone

    digits = _NON_DIGITS.sub("", phone)
    if not digits:
        raise MessageError(f"Invalid phone number: {phone!r}")
    return f"{digits}{suffix}"


def text_payload(text: str) -> dict[str, Any]:
    """Payload for a plain text message."""
    if not text:
        raise MessageError("Message text is empty")
    return {"text": text}


def decode_media(data_b64: str) -> bytes:
    """Decode base64 media.

    Raises:
        MessageError: If the data is not valid base64.
    """
    try:
        return base64.b64decode(data_b64, validate=True)
    except (binascii.Error, ValueError, TypeError) as e:
        raise MessageError(f"Invalid base64 media: {e}") from e


def media_payload(
    data: bytes, mimetype: str, caption: Optional[str] = None
) -> dict[str, Any]:
    """Payload for an image message."""
    if not data:
        raise MessageError("Media is empty")
    payload: dict[str, Any] = {"image": data, "mimetype": mimetype}
    if caption:
        payload["caption"] = caption
    return payload
