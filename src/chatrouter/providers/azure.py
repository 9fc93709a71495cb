from __future__ import annotations

from collections.abc import Sequence
from typing import Any
from urllib.parse import urlparse

import httpx

from ..errors import ProviderError
from ..types import ChatMessage
from . import BaseProvider, content_to_text, error_from_response

_AZURE_KEY_HOST_SUFFIXES = (
    "openai.azure.com",
    "openai.azure.us",
    "openai.azure.cn",
    "cognitiveservices.azure.com",
    "cognitiveservices.azure.us",
    "cognitiveservices.azure.cn",
    "services.ai.azure.com",
)


def _matches_suffix(host: str, suffix: str) -> bool:
    return host == suffix or host.endswith(f".{suffix}")


class AzureInferenceProvider(BaseProvider):
    """Azure AI Inference style ``/chat/completions`` endpoint.

    GitHub Models serves the same surface, so the default configuration points
    here. Image parts are forwarded as-is.
    """

    def _build_chat_request(
        self,
        model: str,
        messages: Sequence[ChatMessage],
    ) -> tuple[str, dict[str, str], dict[str, Any]]:
        key = self._require_credential()
        base_url = self.defn.resolve_base_url()
        if not base_url:
            raise ProviderError(f"Provider '{self.defn.name}' has no endpoint configured")
        parsed = urlparse(base_url)
        path = (parsed.path or "").rstrip("/")
        if not path.lower().endswith("/chat/completions"):
            path = f"{path}/chat/completions"
        url = parsed._replace(path=path).geturl()
        hostname = (parsed.hostname or "").lower()
        headers: dict[str, str] = {"Content-Type": "application/json"}
        if any(_matches_suffix(hostname, suffix) for suffix in _AZURE_KEY_HOST_SUFFIXES):
            headers["api-key"] = key
        else:
            headers["Authorization"] = f"Bearer {key}"
        payload: dict[str, Any] = {
            "messages": [message.to_wire() for message in messages],
            "model": model,
            "temperature": self.defn.temperature,
            "top_p": self.defn.top_p,
        }
        return url, headers, payload

    async def invoke(
        self,
        model: str,
        messages: Sequence[ChatMessage],
        image_refs: Sequence[str] = (),
    ) -> str:
        _ = image_refs
        url, headers, payload = self._build_chat_request(model, messages)
        async with httpx.AsyncClient(timeout=60) as client:
            r = await client.post(url, headers=headers, json=payload)
            if r.is_error:
                raise error_from_response(r)
            data = r.json()
        choices = data.get("choices") or []
        first_choice = choices[0] if choices and isinstance(choices[0], dict) else {}
        message = first_choice.get("message")
        if not isinstance(message, dict):
            return ""
        return content_to_text(message.get("content"))
