"""LLM-backed text generation with validation-aware retries."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Callable, Sequence, TypeVar

from mirascope import llm
from pydantic import BaseModel, Field, ValidationError
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt

from .collaborators import TextGenerator
from .logging_utils import log_error, log_llm


ModelT = TypeVar("ModelT", bound=BaseModel)
LLM_TIMEOUT_SECONDS = 120.0


class GeneratedText(BaseModel):
    """Structured envelope for free text so provider output is validated."""

    text: str = Field(..., min_length=1, description="The generated text only")


@dataclass(slots=True)
class ValidationFeedback:
    """Structured feedback for retrying failed LLM schema outputs."""

    llm_text: str
    issues: Sequence[str]


def _truncate_preview(value: Any, *, limit: int = 80) -> str:
    """Return a compact preview of the offending input value."""

    if value is None:
        return "null"
    text = repr(value)
    if len(text) > limit:
        return text[: limit - 3] + "..."
    return text


def inject_validation_feedback(error: ValidationError) -> ValidationFeedback:
    """Turn a pydantic ValidationError into retry guidance for the model.

    Each issue carries the dotted field path, the message, the error type and a
    truncated preview of the rejected input.
    """

    issues: list[str] = []
    for err in error.errors(include_url=False):  # pragma: no branch - typically small
        loc = ".".join(str(part) for part in err.get("loc", [])) or "root"
        details = f"{loc}: {err.get('msg', 'validation error')}"
        if err.get("type"):
            details += f" [type={err['type']}]"
        if "input" in err:
            details += f" | received={_truncate_preview(err.get('input'))}"
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


async def call_llm_with_retries(
    *,
    system_prompt: str,
    user_prompt: str,
    llm_provider: str,
    llm_model: str,
    response_model: type[ModelT],
    max_attempts: int = 3,
    timeout: float = LLM_TIMEOUT_SECONDS,
    feedback_builder: Callable[[ValidationError], ValidationFeedback] = inject_validation_feedback,
) -> ModelT:
    """Invoke a structured LLM call, retrying only on schema validation errors.

    Validation feedback is appended to the original prompt so the model keeps
    full context while seeing what needs correction. Timeouts and provider
    errors propagate immediately; the caller decides on a fallback.
    """

    system_prompt = system_prompt.strip()
    base_user_prompt = user_prompt.strip()
    feedback_payload: ValidationFeedback | None = None

    @llm.call(provider=llm_provider, model=llm_model, response_model=response_model)
    async def _invoke(prompt: str) -> str:
        return prompt

    attempt_number = 0
    async for attempt in AsyncRetrying(
        retry=retry_if_exception_type(ValidationError),
        stop=stop_after_attempt(max_attempts),
        reraise=True,
    ):
        with attempt:
            attempt_number += 1
            if attempt_number > 1:
                log_llm(
                    f"LLM retry {attempt_number}/{max_attempts} for {response_model.__name__}; "
                    "attempting schema correction."
                )
            sections = [system_prompt, base_user_prompt]
            if feedback_payload is not None:
                sections.append(feedback_payload.llm_text)
            final_prompt = "\n\n".join(section for section in sections if section)
            try:
                return await asyncio.wait_for(_invoke(final_prompt), timeout=timeout)
            except ValidationError as exc:  # pragma: no cover - retry path
                feedback_payload = feedback_builder(exc)
                log_error(
                    f"LLM schema validation failed for {response_model.__name__} "
                    f"(attempt {attempt_number}/{max_attempts})."
                )
                raise
            except asyncio.TimeoutError:  # pragma: no cover - timeout path
                log_error(
                    f"LLM call timed out after {timeout:g}s for {response_model.__name__}."
                )
                raise

    raise RuntimeError("LLM retry mechanism exited unexpectedly")


class LLMTextGenerator(TextGenerator):
    """TextGenerator backed by a Mirascope provider/model pair."""

    def __init__(
        self,
        llm_provider: str,
        llm_model: str,
        *,
        timeout: float = LLM_TIMEOUT_SECONDS,
        max_attempts: int = 3,
    ) -> None:
        if not llm_provider or not llm_model:
            raise ValueError(
                "LLMTextGenerator requires both llm_provider and llm_model. "
                "Set LLM_PROVIDER and LLM_MODEL, or run without a text generator."
            )
        self.llm_provider = llm_provider
        self.llm_model = llm_model
        self.timeout = timeout
        self.max_attempts = max_attempts

    async def generate(self, prompt: str, *, system_prompt: str = "") -> str:
        result = await call_llm_with_retries(
            system_prompt=system_prompt,
            user_prompt=prompt,
            llm_provider=self.llm_provider,
            llm_model=self.llm_model,
            response_model=GeneratedText,
            max_attempts=self.max_attempts,
            timeout=self.timeout,
        )
        return result.text.strip()
