"""Language-generation collaborator — free text and schema-checked records."""

from __future__ import annotations

import logging
import re
from typing import Any, Protocol, TypeVar

import litellm
from pydantic import BaseModel, ValidationError

from llmkit import LLMConfig

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

_CODE_FENCE_RE = re.compile(
    r"^\s*```(?:json)?\s*\n(.*?)\n\s*```\s*$",
    re.DOTALL,
)


class CollaboratorError(Exception):
    """The language service failed or could not be reached."""


class MalformedOutputError(CollaboratorError):
    """The language service answered, but not with the requested record."""

    def __init__(self, schema: type[BaseModel], raw: str, reason: str) -> None:
        self.schema = schema
        self.raw = raw
        super().__init__(f"{schema.__name__} output rejected: {reason}")


class LanguageOracle(Protocol):
    async def describe(
        self, prompt: str, *, system: str = "", image: str | None = None
    ) -> str: ...

    async def extract(
        self,
        prompt: str,
        schema: type[ModelT],
        *,
        system: str = "",
        image: str | None = None,
    ) -> ModelT: ...


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _strip_code_fences(content: str) -> str:
    """Remove wrapping ```json fences if the LLM added them."""
    match = _CODE_FENCE_RE.match(content.strip())
    if match:
        return match.group(1).strip()
    return content.strip()


def _build_messages(
    system: str, prompt: str, image: str | None
) -> list[dict[str, Any]]:
    messages: list[dict[str, Any]] = []
    if system:
        messages.append({"role": "system", "content": system})
    if image is None:
        messages.append({"role": "user", "content": prompt})
    else:
        messages.append({
            "role": "user",
            "content": [
                {"type": "image_url", "image_url": {"url": image}},
                {"type": "text", "text": prompt},
            ],
        })
    return messages


def parse_record(raw: str, schema: type[ModelT]) -> ModelT:
    """Validate *raw* JSON against *schema* or raise MalformedOutputError."""
    text = _strip_code_fences(raw)
    if not text:
        raise MalformedOutputError(schema, raw, "empty response")
    try:
        return schema.model_validate_json(text)
    except ValidationError as exc:
        raise MalformedOutputError(schema, raw, str(exc)) from exc


# ---------------------------------------------------------------------------
# litellm-backed implementation
# ---------------------------------------------------------------------------


class LiteLLMOracle:
    """Talks to any litellm-supported model described by an LLMConfig."""

    def __init__(self, llm: LLMConfig | None = None, *, temperature: float = 0.8) -> None:
        self.llm = llm or LLMConfig()
        self.temperature = temperature

    async def _complete(self, messages: list[dict[str, Any]], **extra: Any) -> str:
        kwargs = self.llm.to_litellm_kwargs()
        kwargs.update({
            "messages": messages,
            "temperature": self.temperature,
            "max_tokens": 512,
        })
        kwargs.update(extra)
        try:
            response = await litellm.acompletion(**kwargs)
        except Exception as exc:
            raise CollaboratorError(f"{self.llm.model} request failed: {exc}") from exc
        if not response.choices:
            raise CollaboratorError("LLM returned empty choices list")
        content = response.choices[0].message.content
        if content is None:
            raise CollaboratorError("LLM returned None content (possibly content-filtered)")
        return content

    async def describe(
        self, prompt: str, *, system: str = "", image: str | None = None
    ) -> str:
        content = await self._complete(_build_messages(system, prompt, image))
        return content.strip()

    async def extract(
        self,
        prompt: str,
        schema: type[ModelT],
        *,
        system: str = "",
        image: str | None = None,
    ) -> ModelT:
        response_format = {
            "type": "json_schema",
            "json_schema": {
                "name": schema.__name__,
                "schema": schema.model_json_schema(by_alias=True),
            },
        }
        raw = await self._complete(
            _build_messages(system, prompt, image),
            response_format=response_format,
        )
        record = parse_record(raw, schema)
        logger.debug("%s parsed: %r", schema.__name__, record)
        return record
