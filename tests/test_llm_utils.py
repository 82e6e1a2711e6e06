"""Unit tests for the LLM retry helper and the default reasoner."""

import pytest
from pydantic import BaseModel, ValidationError

from lumen.llm_utils import (
    LLMReasoner,
    ReasoningFailure,
    call_llm_with_retries,
    inject_validation_feedback,
    is_transient_error,
)


class DummyModel(BaseModel):
    content: str


def make_validation_error() -> ValidationError:
    try:
        DummyModel.model_validate({})
    except ValidationError as exc:
        return exc
    raise AssertionError("expected a validation error")


class RateLimited(Exception):
    status_code = 429


def install_fake_call(monkeypatch, fake_caller, captured: dict | None = None):
    def fake_decorator(*, provider, model, response_model, call_params):
        if captured is not None:
            captured.update(provider=provider, model=model, call_params=call_params)

        def wrapper(fn):
            async def inner(prompt: str):
                return await fake_caller(prompt)

            return inner

        return wrapper

    monkeypatch.setattr("lumen.llm_utils.llm.call", fake_decorator)


@pytest.mark.asyncio
async def test_call_llm_with_retries_success(monkeypatch):
    recorded_prompts: list[str] = []
    captured: dict = {}

    async def fake_caller(prompt: str) -> DummyModel:
        recorded_prompts.append(prompt)
        return DummyModel(content="ok")

    install_fake_call(monkeypatch, fake_caller, captured)

    result = await call_llm_with_retries(
        system_prompt="System context",
        user_prompt="What now?",
        llm_provider="openai",
        llm_model="gpt-4o-mini",
        response_model=DummyModel,
        temperature=0.1,
    )

    assert result.content == "ok"
    assert recorded_prompts == ["System context\n\nWhat now?"]
    assert captured["call_params"] == {"temperature": 0.1}


@pytest.mark.asyncio
async def test_call_llm_with_retries_injects_feedback(monkeypatch):
    attempts: list[str] = []
    validation_error = make_validation_error()

    async def fake_caller(prompt: str) -> DummyModel:
        attempts.append(prompt)
        if len(attempts) == 1:
            raise validation_error
        return DummyModel(content="fixed")

    install_fake_call(monkeypatch, fake_caller)

    result = await call_llm_with_retries(
        system_prompt="System",
        user_prompt="User",
        llm_provider="openai",
        llm_model="gpt-4o-mini",
        response_model=DummyModel,
    )

    assert result.content == "fixed"
    assert len(attempts) == 2
    assert "Your previous JSON response failed to validate against the required schema." in attempts[1]
    assert "- content: Field required" in attempts[1]


@pytest.mark.asyncio
async def test_exhausted_validation_retries_raise_reasoning_failure(monkeypatch):
    attempts: list[str] = []
    validation_error = make_validation_error()

    async def fake_caller(prompt: str) -> DummyModel:
        attempts.append(prompt)
        raise validation_error

    install_fake_call(monkeypatch, fake_caller)

    with pytest.raises(ReasoningFailure) as excinfo:
        await call_llm_with_retries(
            system_prompt="System",
            user_prompt="User",
            llm_provider="openai",
            llm_model="gpt-4o-mini",
            response_model=DummyModel,
            max_attempts=3,
        )

    assert len(attempts) == 3
    assert excinfo.value.response_model == "DummyModel"
    assert isinstance(excinfo.value.__cause__, ValidationError)


@pytest.mark.asyncio
async def test_transient_errors_are_retried(monkeypatch):
    attempts: list[str] = []

    async def fake_caller(prompt: str) -> DummyModel:
        attempts.append(prompt)
        if len(attempts) < 3:
            raise RateLimited("slow down")
        return DummyModel(content="eventually")

    install_fake_call(monkeypatch, fake_caller)

    result = await call_llm_with_retries(
        system_prompt="System",
        user_prompt="User",
        llm_provider="anthropic",
        llm_model="claude-sonnet-4-5",
        response_model=DummyModel,
        backoff_seconds=0,
    )

    assert result.content == "eventually"
    assert len(attempts) == 3
    # Transient retries resend the original prompt unchanged.
    assert attempts[0] == attempts[2]


@pytest.mark.asyncio
async def test_other_errors_fail_immediately(monkeypatch):
    attempts: list[str] = []

    async def fake_caller(prompt: str) -> DummyModel:
        attempts.append(prompt)
        raise ValueError("bad api key")

    install_fake_call(monkeypatch, fake_caller)

    with pytest.raises(ReasoningFailure) as excinfo:
        await call_llm_with_retries(
            system_prompt="System",
            user_prompt="User",
            llm_provider="openai",
            llm_model="gpt-4o-mini",
            response_model=DummyModel,
        )

    assert len(attempts) == 1
    assert isinstance(excinfo.value.underlying, ValueError)


@pytest.mark.asyncio
async def test_call_llm_with_retries_local_provider(monkeypatch):
    captured_kwargs: dict = {}

    async def fake_local_call(
        *,
        system_prompt,
        user_prompt,
        llm_model,
        response_schema=None,
        temperature=None,
        base_url=None,
        timeout=120.0,
    ):
        captured_kwargs.update(
            system_prompt=system_prompt,
            user_prompt=user_prompt,
            llm_model=llm_model,
            response_schema=response_schema,
            temperature=temperature,
        )
        return '{"content":"ok"}'

    def fail_decorator(*args, **kwargs):
        raise AssertionError("remote provider path should not be used for ollama")

    monkeypatch.setattr("lumen.llm_utils.call_ollama_chat", fake_local_call)
    monkeypatch.setattr("lumen.llm_utils.llm.call", fail_decorator)

    result = await call_llm_with_retries(
        system_prompt="System context",
        user_prompt="User payload",
        llm_provider="ollama",
        llm_model="llama3.1",
        response_model=DummyModel,
        temperature=0.2,
    )

    assert result.content == "ok"
    assert captured_kwargs["system_prompt"] == "System context"
    assert captured_kwargs["user_prompt"] == "User payload"
    assert captured_kwargs["llm_model"] == "llama3.1"
    assert captured_kwargs["response_schema"] == DummyModel.model_json_schema()
    assert captured_kwargs["temperature"] == 0.2


def test_feedback_lists_every_issue():
    feedback = inject_validation_feedback(make_validation_error())
    assert feedback.issues == ["content: Field required [type=missing] | received={}"]
    assert feedback.llm_text.endswith("- content: Field required [type=missing] | received={}")


def test_is_transient_error():
    assert is_transient_error(RateLimited())

    class ServerError(Exception):
        status_code = 503

    class BadRequest(Exception):
        status_code = 400

    assert is_transient_error(ServerError())
    assert not is_transient_error(BadRequest())
    assert not is_transient_error(ValueError("no status"))


@pytest.mark.asyncio
async def test_llm_reasoner_forwards_settings(monkeypatch):
    captured: dict = {}

    async def fake_call(**kwargs):
        captured.update(kwargs)
        return DummyModel(content="ok")

    monkeypatch.setattr("lumen.llm_utils.call_llm_with_retries", fake_call)

    reasoner = LLMReasoner(provider="openai", model="gpt-4o-mini", temperature=0.7, max_attempts=2)
    result = await reasoner(system_prompt="S", user_prompt="U", response_model=DummyModel)
    assert result.content == "ok"
    assert captured["temperature"] == 0.7
    assert captured["max_attempts"] == 2
    assert captured["llm_provider"] == "openai"

    await reasoner(system_prompt="S", user_prompt="U", response_model=DummyModel, temperature=0.1)
    assert captured["temperature"] == 0.1
