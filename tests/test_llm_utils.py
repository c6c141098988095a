"""Unit tests for the LLM retry helper and the LLM-backed text generator."""

import asyncio

import pytest
from pydantic import BaseModel, ValidationError

from citypulse.llm_utils import GeneratedText, LLMTextGenerator, call_llm_with_retries


class DummyModel(BaseModel):
    content: str


def _decorator_for(fake_caller, expected_model=None):
    def fake_decorator(*, provider, model, response_model):
        if expected_model is not None:
            assert response_model is expected_model

        def wrapper(fn):
            async def inner(prompt: str):
                return await fake_caller(prompt)

            return inner

        return wrapper

    return fake_decorator


@pytest.mark.asyncio
async def test_call_llm_with_retries_success(monkeypatch):
    recorded_prompts: list[str] = []

    async def fake_caller(prompt: str) -> DummyModel:
        recorded_prompts.append(prompt)
        return DummyModel(content="ok")

    monkeypatch.setattr("citypulse.llm_utils.llm.call", _decorator_for(fake_caller, DummyModel))

    result = await call_llm_with_retries(
        system_prompt="System context",
        user_prompt="What now?",
        llm_provider="openai",
        llm_model="gpt-5-nano",
        response_model=DummyModel,
    )

    assert result.content == "ok"
    assert recorded_prompts == ["System context\n\nWhat now?"]


@pytest.mark.asyncio
async def test_call_llm_with_retries_injects_feedback(monkeypatch):
    attempts: list[str] = []

    try:
        DummyModel.model_validate({})
    except ValidationError as exc:
        validation_error = exc

    async def fake_caller(prompt: str) -> DummyModel:
        attempts.append(prompt)
        if len(attempts) == 1:
            raise validation_error
        return DummyModel(content="fixed")

    monkeypatch.setattr("citypulse.llm_utils.llm.call", _decorator_for(fake_caller))

    result = await call_llm_with_retries(
        system_prompt="System",
        user_prompt="User",
        llm_provider="openai",
        llm_model="gpt-5-nano",
        response_model=DummyModel,
    )

    assert result.content == "fixed"
    assert len(attempts) == 2
    assert "Your previous JSON response failed to validate against the required schema." in attempts[1]
    assert "- content: Field required" in attempts[1]


@pytest.mark.asyncio
async def test_call_llm_with_retries_gives_up_after_max_attempts(monkeypatch):
    attempts: list[str] = []

    try:
        DummyModel.model_validate({})
    except ValidationError as exc:
        validation_error = exc

    async def fake_caller(prompt: str) -> DummyModel:
        attempts.append(prompt)
        raise validation_error

    monkeypatch.setattr("citypulse.llm_utils.llm.call", _decorator_for(fake_caller))

    with pytest.raises(ValidationError):
        await call_llm_with_retries(
            system_prompt="System",
            user_prompt="User",
            llm_provider="openai",
            llm_model="gpt-5-nano",
            response_model=DummyModel,
            max_attempts=2,
        )

    assert len(attempts) == 2


@pytest.mark.asyncio
async def test_call_llm_with_retries_does_not_retry_timeouts(monkeypatch):
    attempts: list[str] = []

    async def fake_caller(prompt: str) -> DummyModel:
        attempts.append(prompt)
        await asyncio.sleep(1)
        return DummyModel(content="late")

    monkeypatch.setattr("citypulse.llm_utils.llm.call", _decorator_for(fake_caller))

    with pytest.raises(asyncio.TimeoutError):
        await call_llm_with_retries(
            system_prompt="System",
            user_prompt="User",
            llm_provider="openai",
            llm_model="gpt-5-nano",
            response_model=DummyModel,
            timeout=0.01,
        )

    assert len(attempts) == 1


@pytest.mark.asyncio
async def test_text_generator_returns_stripped_text(monkeypatch):
    async def fake_caller(prompt: str) -> GeneratedText:
        assert prompt.startswith("Be brief.")
        return GeneratedText(text="  Morning, neighbour!  ")

    monkeypatch.setattr("citypulse.llm_utils.llm.call", _decorator_for(fake_caller, GeneratedText))

    generator = LLMTextGenerator("anthropic", "claude-haiku")
    text = await generator.generate("Say hello", system_prompt="Be brief.")

    assert text == "Morning, neighbour!"


def test_text_generator_requires_provider_and_model():
    with pytest.raises(ValueError):
        LLMTextGenerator("", "gpt-5-nano")
    with pytest.raises(ValueError):
        LLMTextGenerator("openai", "")
