"""Configuration for sketchfriends."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from llmkit import LLMConfig
from sketchfriends.images import DEFAULT_MAX_WIDTH
from sketchfriends.paths import resolve_store_path, resolve_voice_dir


@dataclass(frozen=True)
class Config:
    """Runtime configuration, populated from environment variables."""

    llm: LLMConfig = LLMConfig()
    locale: str = "ja-JP"
    store_path: Path = field(default_factory=resolve_store_path)
    voice_dir: Path = field(default_factory=resolve_voice_dir)
    speak: bool = False
    continuation_delay: float = 1.0
    image_max_width: int = DEFAULT_MAX_WIDTH

    @classmethod
    def from_env(cls) -> Config:
        return cls(
            llm=LLMConfig.from_env(),
            locale=os.environ.get("SKETCHFRIENDS_LOCALE", cls.locale),
            store_path=resolve_store_path(),
            voice_dir=resolve_voice_dir(),
            speak=os.environ.get("SKETCHFRIENDS_SPEAK", "").lower() in ("1", "true", "yes"),
            continuation_delay=float(
                os.environ.get("SKETCHFRIENDS_CONTINUATION_DELAY", cls.continuation_delay)
            ),
            image_max_width=int(
                os.environ.get("SKETCHFRIENDS_IMAGE_MAX_WIDTH", cls.image_max_width)
            ),
        )
