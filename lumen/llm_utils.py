"""Structured model calls with validation-aware and transient-error retries.

This module is the reasoning collaborator of the orchestrator: given a
prompt and a pydantic response model it returns a validated instance, or
raises ``ReasoningFailure`` once its retry budget is spent.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Protocol, Sequence, TypeVar

from mirascope import llm
from pydantic import BaseModel, ValidationError
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
)

from lumen.config import Config
from lumen.local_llm import call_ollama_chat
from lumen.logging_utils import log_debug, log_error, log_llm


ModelT = TypeVar("ModelT", bound=BaseModel)
LLM_TIMEOUT_SECONDS = 120.0
MAX_BACKOFF_SECONDS = 10.0
_TRANSIENT_STATUS = {408, 409, 429}


class ReasoningFailure(RuntimeError):
    """The reasoning backend could not produce a valid structured result."""

    def __init__(self, response_model: str, underlying: BaseException) -> None:
        self.response_model = response_model
        self.underlying = underlying
        super().__init__(
            f"Reasoning call for {response_model} failed: "
            f"{type(underlying).__name__}: {underlying}"
        )


class Reasoner(Protocol):
    """Anything that turns a prompt + response model into a validated model."""

    async def __call__(
        self,
        *,
        system_prompt: str,
        user_prompt: str,
        response_model: type[ModelT],
        temperature: float | None = None,
    ) -> ModelT:
        ...


@dataclass(slots=True)
class ValidationFeedback:
    """Structured feedback for retrying failed schema outputs."""

    llm_text: str
    issues: Sequence[str]


def _truncate_preview(value: Any, *, limit: int = 80) -> str:
    if value is None:
        return "null"
    text = repr(value)
    if len(text) > limit:
        return text[: limit - 3] + "..."
    return text


def inject_validation_feedback(error: ValidationError) -> ValidationFeedback:
    """Turn a pydantic ValidationError into retry guidance for the model.

    Field paths use dot notation (``turn.command``) and include the error
    type and a short preview of the offending input.
    """

    issues: list[str] = []
    for err in error.errors(include_url=False):
        loc = ".".join(str(part) for part in err.get("loc", [])) or "root"
        details = f"{loc}: {err.get('msg', 'validation error')}"
        if err.get("type"):
            details += f" [type={err['type']}]"
        if "input" in err:
            preview = _truncate_preview(err.get("input"))
            if preview:
                details += f" | received={preview}"
        issues.append(details)

    if not issues:
        issues.append("root: response did not match the expected schema")

    instructions = [
        "Your previous JSON response failed to validate against the required schema.",
        "Produce a corrected response that strictly matches the schema.",
        "Do not include explanations or code fences; return only valid JSON.",
        "Issues detected:",
    ]
    instructions.extend(f"- {issue}" for issue in issues)

    return ValidationFeedback(llm_text="\n".join(instructions), issues=issues)


def is_transient_error(exc: BaseException) -> bool:
    """Rate limits, conflicts and 5xx responses from the provider SDK."""
    status = getattr(exc, "status_code", None) or getattr(exc, "status", None)
    if not isinstance(status, int):
        return False
    return status in _TRANSIENT_STATUS or 500 <= status < 600


def _should_retry(exc: BaseException) -> bool:
    return isinstance(exc, ValidationError) or is_transient_error(exc)


async def call_llm_with_retries(
    *,
    system_prompt: str,
    user_prompt: str,
    llm_provider: str,
    llm_model: str,
    response_model: type[ModelT],
    temperature: float | None = None,
    max_attempts: int = 3,
    backoff_seconds: float = 1.0,
    feedback_builder: Callable[[ValidationError], ValidationFeedback] = inject_validation_feedback,
) -> ModelT:
    """Invoke a structured model call with retries.

    Validation failures are retried immediately with feedback appended to
    the original prompt. Transient provider errors are retried with
    exponential backoff. Timeouts and every other error fail at once.

    Raises:
        ReasoningFailure: When attempts are exhausted or a non-retryable
            error occurs. The original exception is chained.
    """

    system_prompt = system_prompt.strip()
    base_user_prompt = user_prompt.strip()
    feedback_payload: ValidationFeedback | None = None

    def _user_section() -> str:
        sections = [base_user_prompt]
        if feedback_payload is not None:
            sections.append(feedback_payload.llm_text)
        return "\n\n".join(section for section in sections if section)

    def _combined(user_section: str) -> str:
        return "\n\n".join(part for part in (system_prompt, user_section) if part)

    def _wait(retry_state: RetryCallState) -> float:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        if exc is not None and is_transient_error(exc):
            return min(backoff_seconds * 2 ** (retry_state.attempt_number - 1), MAX_BACKOFF_SECONDS)
        return 0.0

    use_local_llm = llm_provider.lower() == "ollama"

    remote_invoke: Callable[[str], Any] | None = None
    if not use_local_llm:
        call_params = {"temperature": temperature} if temperature is not None else {}

        @llm.call(
            provider=llm_provider,
            model=llm_model,
            response_model=response_model,
            call_params=call_params,
        )
        async def _invoke(prompt: str) -> str:
            return prompt

        remote_invoke = _invoke

    attempt_number = 0
    try:
        async for attempt in AsyncRetrying(
            retry=retry_if_exception(_should_retry),
            stop=stop_after_attempt(max_attempts),
            wait=_wait,
            reraise=True,
        ):
            with attempt:
                attempt_number += 1
                if attempt_number > 1:
                    log_llm(
                        f"Retry {attempt_number}/{max_attempts} for {response_model.__name__}"
                    )
                user_section = _user_section()
                try:
                    if use_local_llm:
                        raw_response = await asyncio.wait_for(
                            call_ollama_chat(
                                system_prompt=system_prompt,
                                user_prompt=user_section,
                                llm_model=llm_model,
                                response_schema=response_model.model_json_schema(),
                                temperature=temperature,
                                base_url=Config.OLLAMA_BASE_URL,
                            ),
                            timeout=LLM_TIMEOUT_SECONDS,
                        )
                        return response_model.model_validate_json(raw_response)

                    if remote_invoke is None:
                        raise RuntimeError("Remote LLM invoke is not initialized.")

                    return await asyncio.wait_for(
                        remote_invoke(_combined(user_section)),
                        timeout=LLM_TIMEOUT_SECONDS,
                    )
                except ValidationError as exc:
                    feedback_payload = feedback_builder(exc)
                    log_error(
                        f"Schema validation failed for {response_model.__name__} "
                        f"(attempt {attempt_number}/{max_attempts})"
                    )
                    for issue in feedback_payload.issues:
                        log_debug(f"    - {issue}")
                    raise
    except asyncio.TimeoutError as exc:
        log_error(
            f"Model call timed out after {int(LLM_TIMEOUT_SECONDS)}s for {response_model.__name__}"
        )
        raise ReasoningFailure(response_model.__name__, exc) from exc
    except Exception as exc:
        raise ReasoningFailure(response_model.__name__, exc) from exc

    raise RuntimeError("LLM retry mechanism exited unexpectedly")


@dataclass
class LLMReasoner:
    """Default ``Reasoner`` bound to a provider/model pair.

    Example:
        reasoner = LLMReasoner(provider="anthropic", model="claude-sonnet-4-5")
        analysis = await reasoner(
            system_prompt=..., user_prompt=..., response_model=LandscapeAnalysis
        )
    """

    provider: str = field(default_factory=lambda: Config.LLM_PROVIDER)
    model: str = field(default_factory=lambda: Config.LLM_MODEL)
    temperature: Optional[float] = field(default_factory=lambda: Config.LLM_TEMPERATURE)
    max_attempts: int = 3

    async def __call__(
        self,
        *,
        system_prompt: str,
        user_prompt: str,
        response_model: type[ModelT],
        temperature: float | None = None,
    ) -> ModelT:
        log_llm(f"{self.provider}/{self.model} -> {response_model.__name__}")
        return await call_llm_with_retries(
            system_prompt=system_prompt,
            user_prompt=user_prompt,
            llm_provider=self.provider,
            llm_model=self.model,
            response_model=response_model,
            temperature=temperature if temperature is not None else self.temperature,
            max_attempts=self.max_attempts,
        )


__all__ = [
    "LLMReasoner",
    "Reasoner",
    "ReasoningFailure",
    "ValidationFeedback",
    "call_llm_with_retries",
    "inject_validation_feedback",
    "is_transient_error",
]
