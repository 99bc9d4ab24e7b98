"""Image attachments for the first request of a run."""

from __future__ import annotations

import base64
import logging
from pathlib import Path
from typing import Any, Iterable

from yggchat.types import Attachment

_logger = logging.getLogger(__name__)


def _resolve(file_path: str, base_dir: Path) -> Path:
    path = Path(file_path)
    if path.is_absolute():
        return path
    for candidate in (base_dir / path, Path.cwd() / path):
        if candidate.exists():
            return candidate
    return base_dir / path


def image_part(attachment: Attachment, base_dir: Path) -> dict[str, Any] | None:
    """Encode one attachment as an OpenAI ``image_url`` part, or None."""
    path = _resolve(attachment.file_path, base_dir)
    try:
        data = path.read_bytes()
    except OSError as e:
        _logger.warning("Skipping attachment %s: %s", path, e)
        return None
    encoded = base64.b64encode(data).decode("ascii")
    return {
        "type": "image_url",
        "image_url": {"url": f"data:{attachment.mime_type};base64,{encoded}"},
    }


def with_image_attachments(
    messages: list[dict[str, Any]],
    attachments: Iterable[Attachment] | None,
    base_dir: str | Path | None = None,
) -> list[dict[str, Any]]:
    """Return *messages* with image parts added to the last user message.

    Non-system messages are converted to structured text parts.  When there
    is no user message an empty one is appended to carry the images.  The
    input list is not modified.
    """
    atts = [a for a in attachments or () if a.file_path]
    if not atts:
        return messages

    root = Path(base_dir) if base_dir else Path.cwd()
    formatted: list[dict[str, Any]] = []
    for msg in messages:
        content = msg.get("content")
        if msg.get("role") == "system":
            formatted.append({"role": "system", "content": str(content or "")})
        elif isinstance(content, list):
            formatted.append({"role": msg["role"], "content": list(content)})
        else:
            formatted.append({
                "role": msg["role"],
                "content": [{"type": "text", "text": str(content or "")}],
            })

    last_user = next(
        (i for i in range(len(formatted) - 1, -1, -1) if formatted[i]["role"] == "user"),
        None,
    )
    if last_user is None:
        formatted.append({"role": "user", "content": [{"type": "text", "text": ""}]})
        last_user = len(formatted) - 1

    parts = [p for p in (image_part(a, root) for a in atts) if p is not None]
    formatted[last_user]["content"] = formatted[last_user]["content"] + parts
    return formatted
