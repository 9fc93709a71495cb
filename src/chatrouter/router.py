import logging
import os
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, Sequence

try:
    import tomllib
except ModuleNotFoundError:  # pragma: no cover - exercised on older interpreters
    import tomli as tomllib

import yaml
from pydantic import BaseModel, ConfigDict, Field, PositiveInt, ValidationError, model_validator

from .errors import ConfigurationError, EmptyReplyError
from .rate_limit import FailureKind, classify_failure
from .timeout import MODEL_TIMEOUT_MS, with_deadline
from .types import AUTO_SELECTION, RouterOutcome, RouterRequest

if TYPE_CHECKING:  # pragma: no cover
    from .metrics import MetricsLogger
    from .providers import ProviderRegistry

logger = logging.getLogger(__name__)

ALL_UNAVAILABLE_MESSAGE = "All models are currently unavailable. Please try again later."
DEFAULT_FAILURE_MESSAGE = "Failed to get response from AI"


@dataclass
class ProviderDef:
    name: str
    type: str
    base_url: str
    auth_env: tuple[str, ...] = ()
    base_url_env: str | None = None
    temperature: float = 0.7
    top_p: float = 1.0

    def resolve_base_url(self) -> str:
        if self.base_url_env:
            override = os.environ.get(self.base_url_env, "").strip()
            if override:
                return override
        return self.base_url.strip()

    def resolve_credential(self) -> str | None:
        for env_name in self.auth_env:
            value = os.environ.get(env_name, "").strip()
            if value:
                return value
        return None


@dataclass(frozen=True)
class ModelCandidate:
    id: str
    name: str
    priority: int
    provider: str
    model: str


@dataclass
class CatalogDefaults:
    timeout_ms: int = MODEL_TIMEOUT_MS
    system_prompt: str | None = None


@dataclass
class LoadedConfig:
    providers: Dict[str, ProviderDef]
    models: tuple[ModelCandidate, ...]
    defaults: CatalogDefaults = field(default_factory=CatalogDefaults)
    watch_paths: tuple[str, ...] = field(default_factory=tuple)


class _CandidateModel(BaseModel):
    id: str = Field(min_length=1)
    name: str | None = None
    priority: int
    provider: str = Field(min_length=1)
    model: str | None = None

    model_config = ConfigDict(extra="forbid")


class _DefaultsModel(BaseModel):
    timeout_ms: PositiveInt = Field(default=MODEL_TIMEOUT_MS)
    system_prompt: str | None = None

    model_config = ConfigDict(extra="forbid")


class _CatalogModel(BaseModel):
    defaults: _DefaultsModel = Field(default_factory=_DefaultsModel)
    models: list[_CandidateModel] = Field(min_length=1)

    model_config = ConfigDict(extra="forbid")

    @model_validator(mode="after")
    def _check_ids(self) -> "_CatalogModel":
        seen: set[str] = set()
        for candidate in self.models:
            if candidate.id == AUTO_SELECTION:
                raise ValueError(f"model id '{AUTO_SELECTION}' is reserved")
            if candidate.id in seen:
                raise ValueError(f"duplicate model id '{candidate.id}'")
            seen.add(candidate.id)
        return self


def _read_auth_env(name: str, raw_value: object) -> tuple[str, ...]:
    if raw_value is None:
        return ()
    if isinstance(raw_value, str):
        return (raw_value,) if raw_value.strip() else ()
    if isinstance(raw_value, list) and all(isinstance(item, str) for item in raw_value):
        return tuple(item for item in raw_value if item.strip())
    raise ValueError(
        f"Provider '{name}' defines invalid auth_env {raw_value!r}; expected a string or list of strings."
    )


def load_config(config_dir: str, use_dummy: bool = False) -> LoadedConfig:
    prov_path = os.path.join(config_dir, "providers.dummy.toml" if use_dummy else "providers.toml")
    with open(prov_path, "rb") as f:
        prov_data = tomllib.load(f)
    providers: Dict[str, ProviderDef] = {}
    for name, d in prov_data.items():
        providers[name] = ProviderDef(
            name=name,
            type=d.get("type", "azure"),
            base_url=d.get("base_url", ""),
            auth_env=_read_auth_env(name, d.get("auth_env")),
            base_url_env=d.get("base_url_env"),
            temperature=float(d.get("temperature", 0.7)),
            top_p=float(d.get("top_p", 1.0)),
        )
    models_path = os.path.join(config_dir, "models.yaml")
    with open(models_path, "r", encoding="utf-8") as f:
        mdata = yaml.safe_load(f) or {}
    try:
        parsed = _CatalogModel.model_validate(mdata)
    except ValidationError as exc:
        problems = []
        for error in exc.errors():
            location = " -> ".join(str(item) for item in error.get("loc", ())) or "<root>"
            problems.append(f"{location}: {error.get('msg', 'invalid value')}")
        raise ValueError("; ".join(problems)) from exc
    models = tuple(
        ModelCandidate(
            id=entry.id,
            name=entry.name or entry.id,
            priority=entry.priority,
            provider=entry.provider,
            model=entry.model or entry.id,
        )
        for entry in parsed.models
    )
    validate_catalog(models, providers)
    defaults = CatalogDefaults(
        timeout_ms=int(parsed.defaults.timeout_ms),
        system_prompt=parsed.defaults.system_prompt,
    )
    return LoadedConfig(
        providers=providers,
        models=models,
        defaults=defaults,
        watch_paths=(prov_path, models_path),
    )


def validate_catalog(models: Sequence[ModelCandidate], providers: Dict[str, ProviderDef]) -> None:
    for candidate in models:
        if candidate.provider not in providers:
            available = ", ".join(sorted(providers)) or "<none>"
            raise ValueError(
                "Model '{model}' references undefined provider '{provider}'. Available providers: {available}".format(
                    model=candidate.id,
                    provider=candidate.provider,
                    available=available,
                )
            )


class StickyPreference:
    """Id of the candidate that last answered an auto request.

    Unsynchronized on purpose: concurrent requests may overwrite each other and
    the last writer wins.
    """

    __slots__ = ("_model_id",)

    def __init__(self, model_id: str | None = None) -> None:
        self._model_id = model_id

    def get(self) -> str | None:
        return self._model_id

    def set(self, model_id: str) -> None:
        self._model_id = model_id

    def clear(self) -> None:
        self._model_id = None


class ModelRouter:
    def __init__(
        self,
        catalog: Sequence[ModelCandidate],
        providers: "ProviderRegistry",
        *,
        preference: StickyPreference | None = None,
        timeout_ms: int = MODEL_TIMEOUT_MS,
        metrics: "MetricsLogger | None" = None,
    ):
        self.catalog: tuple[ModelCandidate, ...] = tuple(catalog)
        self.providers = providers
        self.preference = preference if preference is not None else StickyPreference()
        self.timeout_ms = timeout_ms
        self.metrics = metrics

    def candidates_for(self, selection: str) -> list[ModelCandidate]:
        if selection != AUTO_SELECTION:
            return [candidate for candidate in self.catalog if candidate.id == selection][:1]
        ordered = sorted(self.catalog, key=lambda candidate: candidate.priority)
        preferred = self.preference.get()
        if preferred:
            index = next(
                (i for i, candidate in enumerate(ordered) if candidate.id == preferred),
                -1,
            )
            if index > 0:
                ordered.insert(0, ordered.pop(index))
        return ordered

    def _require_credentials(self) -> None:
        for candidate in self.catalog:
            try:
                provider = self.providers.get(candidate.provider)
            except KeyError:
                continue
            if provider.is_configured():
                return
        raise ConfigurationError("no credential or endpoint is configured for any model")

    async def _record_attempt(
        self,
        request: RouterRequest,
        candidate: ModelCandidate,
        *,
        attempt: int,
        started: float,
        outcome: str,
    ) -> None:
        if self.metrics is None:
            return
        try:
            await self.metrics.write({
                "ts": time.time(),
                "selection": request.selection,
                "model": candidate.id,
                "provider": candidate.provider,
                "attempt": attempt,
                "latency_ms": int((time.perf_counter() - started) * 1000),
                "ok": outcome == "success",
                "outcome": outcome,
            })
        except OSError:
            logger.exception(f"metrics write failed model={candidate.id} outcome={outcome}")

    async def _invoke(self, candidate: ModelCandidate, request: RouterRequest) -> str:
        provider = self.providers.get(candidate.provider)
        text = await with_deadline(
            provider.invoke(candidate.model, request.messages, request.image_refs),
            candidate.name,
            self.timeout_ms,
        )
        if not isinstance(text, str) or not text.strip():
            raise EmptyReplyError(f"{candidate.name} returned an empty response")
        return text

    async def route(self, request: RouterRequest) -> RouterOutcome:
        self._require_credentials()
        candidates = self.candidates_for(request.selection)
        if not candidates:
            logger.warning(f"route selection={request.selection} matches no model")
            return RouterOutcome.fail(ALL_UNAVAILABLE_MESSAGE)
        last_index = len(candidates) - 1
        for index, candidate in enumerate(candidates):
            started = time.perf_counter()
            try:
                text = await self._invoke(candidate, request)
            except Exception as exc:
                kind = classify_failure(exc)
                await self._record_attempt(
                    request, candidate, attempt=index + 1, started=started, outcome=kind.value
                )
                logger.warning(
                    f"route attempt failed model={candidate.id} kind={kind.value} detail={exc}"
                )
                if kind.transient:
                    continue
                if not request.is_auto or index == last_index:
                    return RouterOutcome.fail(str(exc) or DEFAULT_FAILURE_MESSAGE)
                continue
            reply = text.strip()
            if request.is_auto:
                self.preference.set(candidate.id)
            await self._record_attempt(
                request, candidate, attempt=index + 1, started=started, outcome="success"
            )
            level = logging.WARNING if index > 0 else logging.INFO
            event = "route fallback" if index > 0 else "route success"
            logger.log(level, f"{event} model={candidate.id} attempts={index + 1}")
            return RouterOutcome.ok(reply, candidate.name)
        logger.error(
            f"route exhausted selection={request.selection} attempts={len(candidates)}"
        )
        return RouterOutcome.fail(ALL_UNAVAILABLE_MESSAGE)
