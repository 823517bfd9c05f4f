"""Core data models for sketchfriends.

Every record is frozen; updates go through ``model_copy(update=...)`` so the
store only ever sees fully built records.  Persisted JSON uses camelCase keys.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import StrEnum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

DEFAULT_PERSONALITY = "Friendly"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex


class _Record(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )


# ---------------------------------------------------------------------------
# Setup stages
# ---------------------------------------------------------------------------


class SetupStage(StrEnum):
    IDENTITY = "IDENTITY"
    NAME = "NAME"
    ABILITY = "ABILITY"
    FOOD = "FOOD"
    CHILD_NAME = "CHILD_NAME"
    COMPLETE = "COMPLETE"

    @property
    def field(self) -> str | None:
        """The CharacterSettings field this stage fills in."""
        return _STAGE_FIELDS.get(self)

    def next(self) -> SetupStage:
        if self is SetupStage.COMPLETE:
            raise ValueError("COMPLETE is terminal")
        return STAGE_ORDER[STAGE_ORDER.index(self) + 1]


STAGE_ORDER: tuple[SetupStage, ...] = tuple(SetupStage)

_STAGE_FIELDS: dict[SetupStage, str] = {
    SetupStage.IDENTITY: "species",
    SetupStage.NAME: "name",
    SetupStage.ABILITY: "ability",
    SetupStage.FOOD: "favorite_food",
    SetupStage.CHILD_NAME: "child_name",
}


# ---------------------------------------------------------------------------
# Character records
# ---------------------------------------------------------------------------


class CharacterSettings(_Record):
    """Attributes gathered by the setup dialogue, one stage at a time."""

    species: str | None = None
    original_species: str | None = None
    name: str | None = None
    ability: str | None = None
    favorite_food: str | None = None
    child_name: str | None = None
    personality: str = DEFAULT_PERSONALITY

    @property
    def is_complete(self) -> bool:
        return all(
            getattr(self, name)
            for name in (
                "species", "original_species", "name", "ability",
                "favorite_food", "child_name", "personality",
            )
        )


class CharacterVersion(_Record):
    version_number: int = Field(ge=1)
    image_url: str
    created_at: datetime = Field(default_factory=_now)
    description: str
    ai_recognition_text: str


class ChatMessage(_Record):
    id: str = Field(default_factory=_new_id)
    role: Literal["user", "model"]
    text: str
    timestamp: datetime = Field(default_factory=_now)

    @classmethod
    def user(cls, text: str) -> ChatMessage:
        return cls(role="user", text=text)

    @classmethod
    def reply(cls, text: str) -> ChatMessage:
        return cls(role="model", text=text)


class Character(_Record):
    id: str = Field(default_factory=_new_id)
    created_at: datetime = Field(default_factory=_now)
    settings: CharacterSettings
    versions: list[CharacterVersion]
    current_version_index: int = 0
    is_setup_complete: bool = False
    conversation_history: list[ChatMessage] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_lineage(self) -> Character:
        if not self.versions:
            raise ValueError("a character needs at least one version")
        numbers = [v.version_number for v in self.versions]
        if numbers != list(range(1, len(numbers) + 1)):
            raise ValueError(f"version numbers must run 1..N without gaps, got {numbers}")
        if not 0 <= self.current_version_index < len(self.versions):
            raise ValueError(
                f"current_version_index {self.current_version_index} out of range"
            )
        return self

    @property
    def current_version(self) -> CharacterVersion:
        return self.versions[self.current_version_index]


# ---------------------------------------------------------------------------
# Structured collaborator output
# ---------------------------------------------------------------------------


class _Reply(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        strict=True,
        extra="ignore",
        alias_generator=to_camel,
        populate_by_name=True,
    )


class SetupReply(_Reply):
    """What the language model answers during one setup turn."""

    reply_to_child: str = Field(
        description=(
            "子どもへの返答。短く（最大2文）、元気よく、ひらがな多めで。"
            "HTMLタグは使用禁止。改行は\\nを使用。"
        ),
    )
    extracted_value: str | None = Field(
        description=(
            "子どもの答えから抽出した具体的な値（例: 'ライオン', 'レオン', '走ること'）。"
            "不明な場合はnull。"
        ),
    )
    is_satisfied: bool = Field(
        description="子どもが現在の質問に対して有効な答えを返した場合はtrue。",
    )

    @property
    def value(self) -> str | None:
        """The extracted value, or None when missing or blank."""
        if self.extracted_value is None:
            return None
        return self.extracted_value.strip() or None


class EvolutionReply(_Reply):
    description: str = Field(description="身体的な変化の短い説明（日本語）")
    reaction: str = Field(
        description="子どもへの興奮したメッセージ（日本語、ひらがな多め、HTML禁止）",
    )
