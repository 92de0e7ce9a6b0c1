"""
LLM extraction client.

Turns a batch of artifacts into validated decision records. Anthropic is the
primary provider and OpenAI the fallback; both are called over plain HTTP
with bounded timeouts and bounded retries. Individual decisions that fail
validation are dropped; an empty result is a legitimate answer.
"""

import asyncio
import json
import logging
import random
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol

import httpx
from pydantic import ValidationError as PydanticValidationError

from ..errors import ExtractionError, ServiceUnavailable
from .schema import (
    EXTRACTION_SYSTEM_PROMPT,
    SUGGESTION_SYSTEM_PROMPT,
    DecisionExtraction,
    ExtractionInput,
    ExtractionResult,
    SuggestionResult,
    Usage,
    calculate_cost,
    create_extraction_prompt,
    create_suggestion_prompt,
    estimate_tokens,
)

logger = logging.getLogger(__name__)

MAX_OUTPUT_TOKENS = 4096
MAX_SUGGESTIONS = 5
_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


@dataclass(frozen=True)
class LLMRequest:
    """Vendor-independent completion request."""

    system: str
    prompt: str
    max_tokens: int = MAX_OUTPUT_TOKENS
    json_mode: bool = True


@dataclass(frozen=True)
class LLMResponse:
    """Vendor-independent completion response."""

    text: str
    model: str
    provider: str
    input_tokens: int
    output_tokens: int


class LLMProvider(Protocol):
    """Provider adapter protocol."""

    name: str
    model: str

    async def complete(self, request: LLMRequest) -> LLMResponse:
        """Run one completion."""

    async def close(self) -> None:
        """Release HTTP resources."""


class HTTPProvider:
    """Shared transport, retry and error mapping for HTTP LLM providers."""

    name = "http"
    RETRYABLE_STATUS_CODES = {408, 429, 500, 502, 503, 504, 529}

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str,
        timeout: float = 120.0,
        max_retries: int = 2,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=self._headers(),
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    def _headers(self) -> Dict[str, str]:
        raise NotImplementedError

    async def close(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    def _calculate_backoff(self, attempt: int) -> float:
        capped = min(self.base_delay * (2**attempt), self.max_delay)
        return random.uniform(0, capped)

    async def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        last_error: Optional[str] = None
        for attempt in range(self.max_retries + 1):
            try:
                response = await self.client.post(path, json=payload)
            except (httpx.TimeoutException, httpx.TransportError) as e:
                last_error = f"{type(e).__name__}: {e}"
            else:
                if response.status_code < 400:
                    try:
                        return response.json()
                    except ValueError as e:
                        raise ExtractionError(
                            f"{self.name} returned a non-JSON body"
                        ) from e
                if response.status_code not in self.RETRYABLE_STATUS_CODES:
                    raise ExtractionError(
                        f"{self.name} rejected the request: HTTP {response.status_code}",
                        details={
                            "provider": self.name,
                            "upstream_status": response.status_code,
                            "body": response.text[:500],
                        },
                    )
                last_error = f"HTTP {response.status_code}"

            if attempt < self.max_retries:
                delay = self._calculate_backoff(attempt)
                logger.warning(
                    "Retryable error from LLM provider",
                    extra={
                        "provider": self.name,
                        "error": last_error,
                        "attempt": attempt + 1,
                        "delay": delay,
                    },
                )
                await asyncio.sleep(delay)

        raise ServiceUnavailable(
            f"{self.name} unavailable after {self.max_retries + 1} attempts: {last_error}",
            details={"provider": self.name},
        )


class AnthropicProvider(HTTPProvider):
    name = "anthropic"

    def __init__(
        self,
        api_key: str,
        model: str = "claude-sonnet-4-20250514",
        base_url: str = "https://api.anthropic.com",
        **kwargs: Any,
    ):
        super().__init__(api_key, model, base_url, **kwargs)

    def _headers(self) -> Dict[str, str]:
        return {
            "x-api-key": self.api_key,
            "anthropic-version": "2023-06-01",
            "content-type": "application/json",
        }

    async def complete(self, request: LLMRequest) -> LLMResponse:
        data = await self._post(
            "/v1/messages",
            {
                "model": self.model,
                "max_tokens": request.max_tokens,
                "system": request.system,
                "messages": [{"role": "user", "content": request.prompt}],
            },
        )
        text = "".join(
            block.get("text", "")
            for block in data.get("content") or []
            if block.get("type") == "text"
        )
        if not text:
            raise ExtractionError("No text content in Anthropic response")
        usage = data.get("usage") or {}
        return LLMResponse(
            text=text,
            model=data.get("model") or self.model,
            provider=self.name,
            input_tokens=usage.get("input_tokens")
            or estimate_tokens(request.system + request.prompt),
            output_tokens=usage.get("output_tokens") or estimate_tokens(text),
        )


class OpenAIProvider(HTTPProvider):
    name = "openai"

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o",
        base_url: str = "https://api.openai.com",
        **kwargs: Any,
    ):
        super().__init__(api_key, model, base_url, **kwargs)

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "content-type": "application/json",
        }

    async def complete(self, request: LLMRequest) -> LLMResponse:
        payload: Dict[str, Any] = {
            "model": self.model,
            "max_tokens": request.max_tokens,
            "messages": [
                {"role": "system", "content": request.system},
                {"role": "user", "content": request.prompt},
            ],
        }
        if request.json_mode:
            payload["response_format"] = {"type": "json_object"}
        data = await self._post("/v1/chat/completions", payload)

        choices = data.get("choices") or []
        text = ((choices[0] if choices else {}).get("message") or {}).get("content")
        if not text:
            raise ExtractionError("No content in OpenAI response")
        usage = data.get("usage") or {}
        return LLMResponse(
            text=text,
            model=data.get("model") or self.model,
            provider=self.name,
            input_tokens=usage.get("prompt_tokens")
            or estimate_tokens(request.system + request.prompt),
            output_tokens=usage.get("completion_tokens") or estimate_tokens(text),
        )


def parse_json_object(text: str) -> Dict[str, Any]:
    """Parse a model's JSON answer, tolerating a surrounding code fence."""
    cleaned = _FENCE.sub("", text.strip())
    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise ExtractionError("Failed to parse JSON from model response") from e
    if not isinstance(parsed, dict):
        raise ExtractionError("Model response is not a JSON object")
    return parsed


class ExtractionClient:
    """Extraction and suggestion calls with provider fallback.

    Usage:
        client = ExtractionClient.from_settings(get_settings())
        result = await client.extract([ExtractionInput(...)])
    """

    def __init__(self, providers: List[LLMProvider]):
        self.providers = list(providers)

    @classmethod
    def from_settings(
        cls, settings: Any, transport: Optional[httpx.AsyncBaseTransport] = None
    ) -> "ExtractionClient":
        common = {
            "timeout": settings.extraction_timeout_seconds,
            "max_retries": settings.extraction_max_retries,
            "transport": transport,
        }
        providers: List[LLMProvider] = []
        if settings.anthropic_api_key:
            providers.append(
                AnthropicProvider(
                    settings.anthropic_api_key,
                    model=settings.anthropic_model,
                    base_url=settings.anthropic_api_url,
                    **common,
                )
            )
        if settings.openai_api_key:
            providers.append(
                OpenAIProvider(
                    settings.openai_api_key,
                    model=settings.openai_model,
                    base_url=settings.openai_api_url,
                    **common,
                )
            )
        return cls(providers)

    async def close(self) -> None:
        for provider in self.providers:
            await provider.close()

    async def _complete_with_fallback(
        self, request: LLMRequest, parse: Any
    ) -> Any:
        """Try each provider in order; returns ``(parsed, response, usage)``.

        Tokens burnt on responses that could not be parsed still count
        towards the returned usage. When every provider fails, the raised
        error carries that usage in its ``usage`` attribute.
        """
        if not self.providers:
            raise ExtractionError("No LLM provider is configured")

        spent_in = spent_out = 0
        spent_cost = 0.0
        last_error: Optional[Exception] = None
        last_model = self.providers[0].model

        for provider in self.providers:
            try:
                response = await provider.complete(request)
            except (ExtractionError, ServiceUnavailable) as e:
                logger.warning(
                    "LLM provider failed, trying next",
                    extra={"provider": provider.name, "error": str(e)},
                )
                last_error = e
                continue

            spent_in += response.input_tokens
            spent_out += response.output_tokens
            spent_cost += calculate_cost(
                response.model, response.input_tokens, response.output_tokens
            )
            last_model = response.model
            usage = Usage(
                model=response.model,
                input_tokens=spent_in,
                output_tokens=spent_out,
                total_cost=round(spent_cost, 6),
            )
            try:
                return parse(response.text), response, usage
            except ExtractionError as e:
                logger.warning(
                    "Unusable LLM response, trying next provider",
                    extra={"provider": provider.name, "error": str(e)},
                )
                last_error = e

        assert last_error is not None
        if spent_in or spent_out:
            last_error.usage = Usage(
                model=last_model,
                input_tokens=spent_in,
                output_tokens=spent_out,
                total_cost=round(spent_cost, 6),
            )
        raise last_error

    async def extract(self, batch: List[ExtractionInput]) -> ExtractionResult:
        """Extract decision records from a batch of artifacts.

        Raises:
            ExtractionError: no provider configured, or no usable response
            ServiceUnavailable: every provider exhausted its retries
        """
        request = LLMRequest(
            system=EXTRACTION_SYSTEM_PROMPT, prompt=create_extraction_prompt(batch)
        )
        parsed, response, usage = await self._complete_with_fallback(
            request, parse_json_object
        )

        items = parsed.get("decisions")
        if items is None:
            items = []
        if not isinstance(items, list):
            error = ExtractionError("'decisions' is not a list")
            error.usage = usage
            raise error

        decisions: List[DecisionExtraction] = []
        dropped = 0
        for item in items:
            if item is None:
                continue
            try:
                decisions.append(DecisionExtraction.model_validate(item))
            except PydanticValidationError as e:
                dropped += 1
                logger.warning(
                    "Dropping invalid decision from LLM response",
                    extra={"errors": e.error_count()},
                )

        logger.info(
            "Extraction completed",
            extra={
                "model": usage.model,
                "batch_size": len(batch),
                "decisions": len(decisions),
                "dropped": dropped,
            },
        )
        return ExtractionResult(
            decisions=decisions,
            model=usage.model,
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
            total_cost=usage.total_cost,
            raw_response={"provider": response.provider, "text": response.text},
            dropped=dropped,
        )

    async def suggest_consequences(
        self,
        title: str,
        context: Optional[str],
        decision: Optional[str],
        reasoning: Optional[str],
    ) -> SuggestionResult:
        """Ask for 3-5 consequences, trade-offs or risks missing from a record."""
        request = LLMRequest(
            system=SUGGESTION_SYSTEM_PROMPT,
            prompt=create_suggestion_prompt(title, context, decision, reasoning),
            max_tokens=1024,
        )

        def parse(text: str) -> List[str]:
            items = parse_json_object(text).get("suggestions")
            if not isinstance(items, list):
                raise ExtractionError("'suggestions' is not a list")
            cleaned = [str(s).strip() for s in items if str(s).strip()]
            if not cleaned:
                raise ExtractionError("No suggestions in model response")
            return cleaned[:MAX_SUGGESTIONS]

        suggestions, _, usage = await self._complete_with_fallback(request, parse)
        return SuggestionResult(
            suggestions=suggestions,
            model=usage.model,
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
            total_cost=usage.total_cost,
        )
