"""OpenAI-compatible model client with JSON-mode decoding and typed failures."""
from __future__ import annotations

import json
import time
from dataclasses import dataclass
from typing import Any, TypeVar

import openai
from pydantic import BaseModel, ValidationError as PydanticValidationError

from marginalia.config import Settings, settings as default_settings
from marginalia.errors import (
    NetworkError,
    UpstreamAuthError,
    UpstreamBadRequestError,
    UpstreamError,
    UpstreamRateLimitError,
    UpstreamServerError,
    ValidationError,
)
from marginalia.services import logger as log_service

OutputT = TypeVar("OutputT", bound=BaseModel)

UserContent = str | list[dict[str, Any]]


@dataclass
class Usage:
    input_tokens: int = 0
    output_tokens: int = 0


@dataclass
class Completion:
    text: str
    usage: Usage


def map_openai_error(exc: Exception) -> UpstreamError:
    """Translate an SDK exception into the upstream error taxonomy."""
    status = getattr(exc, "status_code", None)

    if isinstance(exc, (openai.AuthenticationError, openai.PermissionDeniedError)):
        return UpstreamAuthError(
            "Model API authentication failed: Invalid API key", upstream_status=status
        )
    if isinstance(exc, openai.RateLimitError):
        if getattr(exc, "code", None) == "insufficient_quota":
            return UpstreamRateLimitError("Model API quota exceeded", upstream_status=status)
        return UpstreamRateLimitError("Model API rate limit exceeded", upstream_status=status)
    if isinstance(exc, openai.APITimeoutError):
        return NetworkError("Model API request timed out")
    if isinstance(exc, openai.APIConnectionError):
        return NetworkError("Model API network error: No response received")
    if isinstance(exc, openai.APIStatusError):
        if status is not None and status >= 500:
            return UpstreamServerError(f"Model API error ({status}): {exc.message}", upstream_status=status)
        return UpstreamBadRequestError(f"Model API bad request: {exc.message}", upstream_status=status)
    return UpstreamError(f"Model API error: {exc}")


class LLMClient:
    """Thin wrapper over ``AsyncOpenAI`` used by every generative component.

    Construct one per process and pass it into the components that need it.
    """

    def __init__(
        self,
        openai_client: Any | None,
        *,
        default_model: str,
        timeout_seconds: float = 60.0,
    ):
        self._client = openai_client
        self.default_model = default_model
        self.timeout_seconds = timeout_seconds

    @property
    def configured(self) -> bool:
        return self._client is not None

    def ensure_configured(self) -> None:
        if self._client is None:
            raise ValidationError("OPENAI_API_KEY is not set in environment variables")

    @staticmethod
    def _temperature_for_model(model: str, requested: float) -> float:
        # Some GPT-5-compatible gateways reject anything but the default temperature.
        lowered = (model or "").lower()
        if "gpt-5" in lowered:
            return 1
        return requested

    @staticmethod
    def _build_messages(system: str | None, user: UserContent) -> list[dict[str, Any]]:
        messages: list[dict[str, Any]] = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": user})
        return messages

    async def _create(
        self,
        *,
        caller: str,
        model: str | None,
        system: str | None,
        user: UserContent,
        temperature: float,
        max_tokens: int | None,
        json_mode: bool,
    ) -> Completion:
        self.ensure_configured()
        used_model = model or self.default_model
        kwargs: dict[str, Any] = {
            "model": used_model,
            "messages": self._build_messages(system, user),
            "temperature": self._temperature_for_model(used_model, temperature),
            "timeout": self.timeout_seconds,
        }
        if max_tokens:
            kwargs["max_tokens"] = max_tokens
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        t0 = time.monotonic()
        try:
            response = await self._client.chat.completions.create(**kwargs)
        except Exception as exc:
            elapsed_ms = int((time.monotonic() - t0) * 1000)
            mapped = map_openai_error(exc)
            log_service.log_llm_call(
                model=used_model,
                caller=caller,
                duration_ms=elapsed_ms,
                status="error",
                error=mapped.message,
            )
            raise mapped from exc
        elapsed_ms = int((time.monotonic() - t0) * 1000)

        usage = getattr(response, "usage", None)
        mapped_usage = Usage(
            input_tokens=getattr(usage, "prompt_tokens", 0) or 0,
            output_tokens=getattr(usage, "completion_tokens", 0) or 0,
        )
        log_service.log_llm_call(
            model=used_model,
            caller=caller,
            input_tokens=mapped_usage.input_tokens,
            output_tokens=mapped_usage.output_tokens,
            duration_ms=elapsed_ms,
        )

        choices = getattr(response, "choices", None) or []
        text = getattr(choices[0].message, "content", None) if choices else None
        if not text:
            raise UpstreamBadRequestError(f"Model returned an empty response for {caller}")
        return Completion(text=text, usage=mapped_usage)

    async def complete_text(
        self,
        *,
        caller: str,
        system: str | None,
        user: UserContent,
        model: str | None = None,
        temperature: float = 0.7,
        max_tokens: int | None = None,
    ) -> str:
        completion = await self._create(
            caller=caller,
            model=model,
            system=system,
            user=user,
            temperature=temperature,
            max_tokens=max_tokens,
            json_mode=False,
        )
        return completion.text.strip()

    async def complete_json(
        self,
        *,
        caller: str,
        system: str | None,
        user: UserContent,
        output_model: type[OutputT],
        model: str | None = None,
        temperature: float = 0.3,
        max_tokens: int | None = None,
    ) -> OutputT:
        """Call the model in JSON mode and validate the object against ``output_model``."""
        completion = await self._create(
            caller=caller,
            model=model,
            system=system,
            user=user,
            temperature=temperature,
            max_tokens=max_tokens,
            json_mode=True,
        )
        try:
            payload = json.loads(completion.text)
        except json.JSONDecodeError as exc:
            raise UpstreamBadRequestError(f"Model returned invalid JSON for {caller}") from exc
        if not isinstance(payload, dict):
            raise UpstreamBadRequestError(f"Model returned a non-object JSON payload for {caller}")
        try:
            return output_model.model_validate(payload)
        except PydanticValidationError as exc:
            raise UpstreamBadRequestError(
                f"Model response for {caller} did not match the expected shape"
            ) from exc


def get_client(config: Settings | None = None) -> LLMClient:
    """Build an ``LLMClient`` from settings; unconfigured when no API key is set."""
    config = config or default_settings
    openai_client = None
    if config.openai_api_key:
        kwargs: dict[str, Any] = {
            "api_key": config.openai_api_key,
            "timeout": config.llm_timeout_seconds,
        }
        base_url = config.openai_base_url.strip()
        if base_url:
            kwargs["base_url"] = base_url
        openai_client = openai.AsyncOpenAI(**kwargs)
    return LLMClient(
        openai_client,
        default_model=config.default_model,
        timeout_seconds=config.llm_timeout_seconds,
    )
