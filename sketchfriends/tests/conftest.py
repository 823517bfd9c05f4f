"""Shared fixtures: scripted language oracle, recording synthesizer, stores."""

from __future__ import annotations

import asyncio
import io
from collections.abc import Callable
from typing import Any

import pytest
from PIL import Image
from pydantic import BaseModel

from sketchfriends.images import encode_image
from sketchfriends.models import Character, CharacterSettings, CharacterVersion
from sketchfriends.oracle import CollaboratorError
from sketchfriends.speech import SpeechIO
from sketchfriends.store import CharacterStore


class FakeOracle:
    """Answers from queues; exceptions in a queue are raised instead."""

    def __init__(self) -> None:
        self.descriptions: list[str | Exception] = []
        self.records: list[BaseModel | dict[str, Any] | Exception] = []
        self.calls: list[dict[str, Any]] = []
        self.gate: asyncio.Event | None = None

    async def _wait(self) -> None:
        if self.gate is not None:
            await self.gate.wait()

    async def describe(
        self, prompt: str, *, system: str = "", image: str | None = None
    ) -> str:
        self.calls.append({"kind": "describe", "prompt": prompt, "system": system, "image": image})
        await self._wait()
        if not self.descriptions:
            raise CollaboratorError("no scripted description left")
        item = self.descriptions.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    async def extract(
        self,
        prompt: str,
        schema: type[BaseModel],
        *,
        system: str = "",
        image: str | None = None,
    ) -> Any:
        self.calls.append({
            "kind": "extract", "prompt": prompt, "system": system,
            "image": image, "schema": schema,
        })
        await self._wait()
        if not self.records:
            raise CollaboratorError("no scripted record left")
        item = self.records.pop(0)
        if isinstance(item, Exception):
            raise item
        if isinstance(item, dict):
            return schema.model_validate(item)
        return item


class RecordingSynthesizer:
    def __init__(self) -> None:
        self.spoken: list[str] = []
        self.hold: asyncio.Event | None = None

    async def speak(self, text: str, *, locale: str) -> None:
        if self.hold is not None:
            await self.hold.wait()
        self.spoken.append(text)


def _setup_reply(
    reply: str, value: str | None = None, satisfied: bool | None = None
) -> dict[str, Any]:
    return {
        "replyToChild": reply,
        "extractedValue": value,
        "isSatisfied": value is not None if satisfied is None else satisfied,
    }


def _png_data_url(width: int, height: int, mode: str = "RGB") -> str:
    color: Any = (255, 0, 0, 128) if mode == "RGBA" else (255, 0, 0)
    buf = io.BytesIO()
    Image.new(mode, (width, height), color).save(buf, format="PNG")
    return encode_image(buf.getvalue(), "image/png")


_COMPLETE_SETTINGS = CharacterSettings(
    species="ライオン",
    original_species="きいろい どうぶつ",
    name="レオ",
    ability="はやくはしる",
    favorite_food="にく",
    child_name="ゆい",
)


@pytest.fixture
def oracle() -> FakeOracle:
    return FakeOracle()


@pytest.fixture
def synthesizer() -> RecordingSynthesizer:
    return RecordingSynthesizer()


@pytest.fixture
def speech(synthesizer: RecordingSynthesizer) -> SpeechIO:
    return SpeechIO(synthesizer)


@pytest.fixture
def store() -> CharacterStore:
    return CharacterStore()


@pytest.fixture
def make_character() -> Callable[..., Character]:
    def factory(versions: int = 1, **settings: Any) -> Character:
        return Character(
            settings=_COMPLETE_SETTINGS.model_copy(update=settings),
            versions=[
                CharacterVersion(
                    version_number=n,
                    image_url=f"data:image/png;base64,v{n}",
                    description="たんじょう" if n == 1 else f"へんしん{n}",
                    ai_recognition_text="きいろい どうぶつ",
                )
                for n in range(1, versions + 1)
            ],
            current_version_index=versions - 1,
            is_setup_complete=True,
        )

    return factory


@pytest.fixture
def complete_settings() -> CharacterSettings:
    return _COMPLETE_SETTINGS


@pytest.fixture
def setup_reply() -> Callable[..., dict[str, Any]]:
    """Build a raw setup reply; ``isSatisfied`` defaults to "a value was given"."""
    return _setup_reply


@pytest.fixture
def png() -> Callable[..., str]:
    """Build a solid-colour PNG data URL of the given size."""
    return _png_data_url
