from __future__ import annotations

import json
from collections.abc import Sequence
from typing import Any

import httpx

from ..errors import ProviderError
from ..types import ChatMessage
from . import BaseProvider, error_from_response

__all__ = ["BytezProvider"]

IMAGE_NOTE = "[{count} image(s) attached - image analysis may be limited]"


def collapse_message(message: ChatMessage) -> dict[str, str]:
    if isinstance(message.content, str):
        return {"role": message.role, "content": message.content}
    text = message.text
    count = message.image_count
    content = f"{text}\n\n{IMAGE_NOTE.format(count=count)}" if count > 0 else text
    return {"role": message.role, "content": content}


def _output_text(output: Any) -> str:
    if isinstance(output, dict):
        for key in ("content", "message", "text"):
            value = output.get(key)
            if isinstance(value, str):
                return value
        return json.dumps(output, ensure_ascii=False)
    if output is None:
        return ""
    return output if isinstance(output, str) else str(output)


class BytezProvider(BaseProvider):
    """Bytez hosted models. Text only; image parts become a short note."""

    async def invoke(
        self,
        model: str,
        messages: Sequence[ChatMessage],
        image_refs: Sequence[str] = (),
    ) -> str:
        _ = image_refs
        key = self._require_credential()
        url = f"{self.defn.resolve_base_url().rstrip('/')}/{model.lstrip('/')}"
        headers = {"Content-Type": "application/json", "Authorization": key}
        payload: dict[str, Any] = {
            "messages": [collapse_message(message) for message in messages],
            "stream": False,
            "params": {"temperature": self.defn.temperature, "top_p": self.defn.top_p},
        }
        async with httpx.AsyncClient(timeout=60) as client:
            response = await client.post(url, headers=headers, json=payload)
            if response.is_error:
                raise error_from_response(response)
            data = response.json()
        error = data.get("error")
        if error:
            if isinstance(error, dict):
                code = error.get("code")
                if code is None:
                    code = error.get("status")
                message = error.get("message")
                raise ProviderError(
                    message if isinstance(message, str) and message else str(error),
                    error_code=code,
                )
            raise ProviderError(str(error))
        return _output_text(data.get("output"))
