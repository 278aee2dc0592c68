"""
Model runtime client for LLM-backed jobs.

Calls go through a circuit breaker wrapping a bounded retry: throttling and
brief unavailability are retried inside one call, repeated failures open the
circuit, and caller validation errors never count against the dependency.
"""

import asyncio
import re
import time
from collections.abc import Awaitable, Callable
from typing import Any

import httpx
from pydantic import BaseModel, Field

from riskjobs.config.logging import get_logger
from riskjobs.config.settings import Settings
from riskjobs.v1.core.circuit_breaker import CircuitBreaker
from riskjobs.v1.core.exceptions import ModelInvocationError
from riskjobs.v1.core.retry import with_retry

logger = get_logger(__name__)

ANTHROPIC_VERSION = "bedrock-2023-05-31"

RETRYABLE_CODES = frozenset(
    {"ThrottlingException", "ServiceUnavailableException", "TransportError"}
)
VALIDATION_CODE = "ValidationException"

_STATUS_CODES = {
    400: VALIDATION_CODE,
    422: VALIDATION_CODE,
    429: "ThrottlingException",
    502: "ServiceUnavailableException",
    503: "ServiceUnavailableException",
    504: "ServiceUnavailableException",
}


class PromptPreviewRequest(BaseModel):
    """Prompt to run once against the model, with template variables."""

    system_prompt: str = Field(..., min_length=1)
    user_prompt_template: str = Field(..., min_length=1)
    variables: dict[str, str] = Field(default_factory=dict)
    model_id: str | None = None


def render_template(template: str, variables: dict[str, str]) -> str:
    """Substitute ``{{name}}`` placeholders; unknown placeholders are kept."""
    rendered = template
    for key, value in variables.items():
        rendered = re.sub(r"\{\{" + re.escape(key) + r"\}\}", lambda _m: value, rendered)
    return rendered


def is_retryable_model_error(error: Exception) -> bool:
    return isinstance(error, ModelInvocationError) and error.retryable


def is_tripping_model_error(error: Exception) -> bool:
    """Everything except caller validation errors counts against the breaker."""
    return not (
        isinstance(error, ModelInvocationError) and error.code == VALIDATION_CODE
    )


class ModelClient:
    """Invokes Anthropic-messages models on an HTTP model runtime."""

    def __init__(
        self,
        settings: Settings,
        http_client: httpx.AsyncClient | None = None,
        breaker: CircuitBreaker | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.settings = settings
        self._sleep = sleep

        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if settings.llm_api_key:
            headers["Authorization"] = f"Bearer {settings.llm_api_key}"

        self._client = http_client or httpx.AsyncClient(
            base_url=settings.model_endpoint,
            timeout=settings.llm_timeout_s,
            headers=headers,
        )
        self.breaker = breaker or CircuitBreaker(
            name="model-runtime",
            failure_threshold=settings.llm_breaker_failure_threshold,
            reset_timeout_ms=settings.llm_breaker_reset_timeout_ms,
            is_failure=is_tripping_model_error,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def invoke_model(
        self, model_id: str, system_prompt: str, user_prompt: str
    ) -> dict[str, Any]:
        """
        Run a single-turn completion.

        Returns:
            {"output": str, "tokens_used": int, "processing_time_ms": int}
        """
        started = time.monotonic()
        logger.info("Invoking model", model_id=model_id)

        body = {
            "anthropic_version": ANTHROPIC_VERSION,
            "max_tokens": self.settings.llm_max_tokens,
            "system": system_prompt,
            "messages": [{"role": "user", "content": user_prompt}],
        }

        def log_retry(error: Exception, attempt: int) -> None:
            logger.warning(
                "Model call failed, retrying",
                model_id=model_id,
                attempt=attempt,
                error=str(error),
            )

        response_body = await self.breaker.execute(
            lambda: with_retry(
                lambda: self._send(model_id, body),
                max_attempts=self.settings.llm_retry_max_attempts,
                is_retryable=is_retryable_model_error,
                on_retry=log_retry,
                sleep=self._sleep,
            )
        )

        output = "".join(
            block.get("text", "")
            for block in response_body.get("content") or []
            if block.get("type") == "text"
        )
        usage = response_body.get("usage") or {}
        tokens_used = usage.get("input_tokens", 0) + usage.get("output_tokens", 0)

        return {
            "output": output,
            "tokens_used": tokens_used,
            "processing_time_ms": int((time.monotonic() - started) * 1000),
        }

    async def preview(self, request: PromptPreviewRequest) -> dict[str, Any]:
        """Render the prompt template and run it once."""
        return await self.invoke_model(
            model_id=request.model_id or self.settings.llm_model_id,
            system_prompt=request.system_prompt,
            user_prompt=render_template(request.user_prompt_template, request.variables),
        )

    async def _send(self, model_id: str, body: dict[str, Any]) -> dict[str, Any]:
        try:
            response = await self._client.post(f"/model/{model_id}/invoke", json=body)
        except httpx.TransportError as e:
            raise ModelInvocationError(
                f"Model runtime unreachable: {e}",
                model_id,
                code="TransportError",
                retryable=True,
            ) from e

        if response.status_code >= 400:
            raise _error_from_response(response, model_id)

        return response.json()


def _error_from_response(response: httpx.Response, model_id: str) -> ModelInvocationError:
    error_type = response.headers.get("x-amzn-ErrorType", "").split(":")[0]
    code = error_type or _STATUS_CODES.get(response.status_code, "ModelError")

    try:
        payload = response.json()
    except ValueError:
        payload = None
    message = (payload.get("message") if isinstance(payload, dict) else None) or response.text

    return ModelInvocationError(
        f"Model invocation failed ({response.status_code}): {message}",
        model_id,
        code=code,
        retryable=code in RETRYABLE_CODES,
        details={"status_code": response.status_code},
    )
