import base64
import logging
import mimetypes
import os
from typing import Iterable, Sequence

from .types import Attachment, ChatMessage, ContentPart, ImageURL

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = "You are a helpful assistant. Be clear, accurate and professional."
IMAGE_ONLY_PROMPT = "Please analyze this image."
EMPTY_TURN_PROMPT = "Hello"
UPLOADS_PREFIX = "/uploads/"


def _read_as_data_url(path: str, mime_type: str) -> str:
    with open(path, "rb") as handle:
        encoded = base64.b64encode(handle.read()).decode("ascii")
    return f"data:{mime_type};base64,{encoded}"


def _local_path(url: str, upload_dir: str) -> str | None:
    if not url.startswith(UPLOADS_PREFIX):
        return None
    name = url[len(UPLOADS_PREFIX):]
    root = os.path.realpath(upload_dir)
    candidate = os.path.realpath(os.path.join(root, name))
    if os.path.commonpath([root, candidate]) != root:
        return None
    return candidate


def resolve_image_refs(attachments: Iterable[Attachment], upload_dir: str) -> list[str]:
    """Turn image attachments into URLs a provider can consume.

    ``data:`` and ``http(s)`` URLs are used as-is; files under ``/uploads/``
    are inlined as base64 data URLs. Anything unreadable is logged and skipped.
    """
    refs: list[str] = []
    for attachment in attachments:
        if not attachment.type.startswith("image/"):
            continue
        url = attachment.url
        if url.startswith("data:") or url.startswith(("http://", "https://")):
            refs.append(url)
            continue
        path = _local_path(url, upload_dir)
        if path is None:
            logger.warning(f"skipping image {attachment.filename!r}: unsupported url {url!r}")
            continue
        mime_type = attachment.type or mimetypes.guess_type(path)[0] or "image/jpeg"
        try:
            refs.append(_read_as_data_url(path, mime_type))
        except OSError as exc:
            logger.error(f"skipping image {attachment.filename!r}: {exc}")
            continue
        logger.debug(f"inlined image {attachment.filename!r} as data url")
    return refs


def build_user_message(text: str | None, image_refs: Sequence[str]) -> ChatMessage:
    if not image_refs:
        return ChatMessage(role="user", content=text or EMPTY_TURN_PROMPT)
    parts = [ContentPart(type="text", text=text or IMAGE_ONLY_PROMPT)]
    parts.extend(
        ContentPart(type="image_url", image_url=ImageURL(url=url)) for url in image_refs
    )
    return ChatMessage(role="user", content=parts)


def build_messages(
    system_prompt: str | None,
    history: Iterable[tuple[str, str]],
    text: str | None,
    image_refs: Sequence[str] = (),
) -> list[ChatMessage]:
    messages = [ChatMessage(role="system", content=system_prompt or DEFAULT_SYSTEM_PROMPT)]
    for role, content in history:
        if role not in ("user", "assistant") or not content:
            continue
        messages.append(ChatMessage(role=role, content=content))
    messages.append(build_user_message(text, image_refs))
    return messages
