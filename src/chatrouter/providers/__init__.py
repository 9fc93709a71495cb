from typing import Any, Dict, Sequence

import httpx

from ..errors import ProviderError
from ..router import ProviderDef
from ..types import ChatMessage


def error_from_response(response: httpx.Response) -> ProviderError:
    """Unwrap an upstream error body into a :class:`ProviderError`."""
    status = response.status_code
    code: Any = None
    message: str | None = None
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        error_field = payload.get("error")
        if isinstance(error_field, dict):
            code = error_field.get("code")
            error_message = error_field.get("message")
            if isinstance(error_message, str) and error_message:
                message = error_message
        elif isinstance(error_field, str) and error_field:
            message = error_field
        if message is None:
            nested_message = payload.get("message")
            if isinstance(nested_message, str) and nested_message:
                message = nested_message
    if message is None:
        text = response.text
        if text:
            message = text
    if message is None:
        message = response.reason_phrase or "Unexpected response from AI API"
    return ProviderError(message, status_code=status, error_code=code if code is not None else status)


def content_to_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        pieces: list[str] = []
        for item in content:
            if isinstance(item, dict):
                text = item.get("text")
                if isinstance(text, str):
                    pieces.append(text)
            elif isinstance(item, str):
                pieces.append(item)
        return "".join(pieces)
    return ""


class BaseProvider:
    requires_credential = True

    def __init__(self, defn: ProviderDef):
        self.defn = defn

    def is_configured(self) -> bool:
        if not self.defn.resolve_base_url():
            return False
        if self.requires_credential:
            return self.defn.resolve_credential() is not None
        return True

    def _require_credential(self) -> str:
        key = self.defn.resolve_credential()
        if key is None:
            names = " or ".join(self.defn.auth_env) or "<none>"
            raise ProviderError(f"Provider '{self.defn.name}' has no credential configured ({names})")
        return key

    async def invoke(
        self,
        model: str,
        messages: Sequence[ChatMessage],
        image_refs: Sequence[str] = (),
    ) -> str:
        raise NotImplementedError


class DummyProvider(BaseProvider):
    requires_credential = False

    def is_configured(self) -> bool:
        return True

    async def invoke(
        self,
        model: str,
        messages: Sequence[ChatMessage],
        image_refs: Sequence[str] = (),
    ) -> str:
        # echo the latest user turn so tests can see what was routed
        last_user = next((m.text for m in reversed(messages) if m.role == "user"), "ping")
        suffix = f" (+{len(image_refs)} image(s))" if image_refs else ""
        return f"dummy:{last_user}{suffix}"


from .azure import AzureInferenceProvider
from .bytez import BytezProvider


class ProviderRegistry:
    _PROVIDER_FACTORIES: dict[str, type[BaseProvider]] = {
        "azure": AzureInferenceProvider,
        "bytez": BytezProvider,
        "dummy": DummyProvider,
    }

    def __init__(self, providers: Dict[str, ProviderDef]):
        self.providers: dict[str, BaseProvider] = {}
        for name, d in providers.items():
            provider_type = d.type
            if not provider_type.strip():
                raise ValueError(
                    f"Unknown provider type '<missing>' for provider '{name}'"
                )

            factory = self._PROVIDER_FACTORIES.get(provider_type)
            if factory is None:
                raise ValueError(
                    f"Unknown provider type '{provider_type}' for provider '{name}'"
                )
            self.providers[name] = factory(d)

    def get(self, name: str) -> BaseProvider:
        return self.providers[name]


__all__ = [
    "AzureInferenceProvider",
    "BaseProvider",
    "BytezProvider",
    "DummyProvider",
    "ProviderRegistry",
    "content_to_text",
    "error_from_response",
]
