"""Compose structured user content from text plus uploaded attachments."""

from __future__ import annotations

import base64
import binascii
from typing import Any

from agentkit.engine.errors import InvalidAttachmentError
from agentkit.shared.models.message import Attachment

IMAGE_MEDIA_TYPES = {"image/png", "image/jpeg", "image/gif", "image/webp"}
DOCUMENT_MEDIA_TYPES = {"application/pdf"}
TEXT_MEDIA_PREFIX = "text/"
TEXT_MEDIA_TYPES = {"application/json", "application/xml", "application/x-yaml"}


def _decode(attachment: Attachment) -> bytes:
    try:
        return base64.b64decode(attachment.data, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise InvalidAttachmentError(attachment.name, f"invalid base64 data ({exc})") from exc


def attachment_to_block(attachment: Attachment) -> dict[str, Any]:
    """Convert one attachment into a content block. Raises InvalidAttachmentError."""
    if not attachment.name:
        raise InvalidAttachmentError("<unnamed>", "missing name")
    if not attachment.data:
        raise InvalidAttachmentError(attachment.name, "missing data")
    media_type = attachment.media_type.lower().strip()
    raw = _decode(attachment)

    if media_type in IMAGE_MEDIA_TYPES:
        return {
            "type": "image",
            "source": {"type": "base64", "media_type": media_type, "data": attachment.data},
        }
    if media_type in DOCUMENT_MEDIA_TYPES:
        return {
            "type": "document",
            "title": attachment.name,
            "source": {"type": "base64", "media_type": media_type, "data": attachment.data},
        }
    if media_type.startswith(TEXT_MEDIA_PREFIX) or media_type in TEXT_MEDIA_TYPES:
        try:
            body = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise InvalidAttachmentError(attachment.name, "text attachment is not utf-8") from exc
        return {"type": "text", "text": f"<file name=\"{attachment.name}\">\n{body}\n</file>"}
    raise InvalidAttachmentError(attachment.name, f"unsupported media type {media_type or '<none>'}")


def compose_user_content(
    content: str | list[dict[str, Any]],
    attachments: list[Attachment] | None = None,
) -> str | list[dict[str, Any]]:
    """Unchanged content when there are no attachments, content blocks otherwise.

    Attachment blocks come first, followed by the user's own text (or
    blocks), which is how the backend expects files to be referenced.
    """
    if not attachments:
        return content
    blocks: list[dict[str, Any]] = [attachment_to_block(a) for a in attachments]
    if isinstance(content, str):
        blocks.append({"type": "text", "text": content})
    else:
        blocks.extend(content)
    return blocks
