"""Version lineage — birth of a character and evolution onto new drawings.

History is append-only: an evolution adds one version and one chat message,
moves the current-version pointer to the new entry, and leaves every earlier
version untouched.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

from sketchfriends.images import CaptureError, resize_image
from sketchfriends.models import (
    Character,
    CharacterSettings,
    CharacterVersion,
    ChatMessage,
    EvolutionReply,
)
from sketchfriends.oracle import CollaboratorError, LanguageOracle
from sketchfriends.speech import SpeechIO
from sketchfriends.store import CharacterStore

logger = logging.getLogger(__name__)

BIRTH_DESCRIPTION = "たんじょう"
FIRST_FORM = "あかちゃんのすがた"
FALLBACK_EVOLUTION = EvolutionReply(
    description="まほうのへんしん！",
    reaction="わあ！ つよくなったきがする！",
)

_EVOLVE_PROMPT = """\
あなたは {name} ({species}) です。
子どもが新しい絵を描いてくれて、進化しました！

前の姿: {previous}.

タスク:
1. 新しい絵を見る。
2. どう変わったか説明する（例：「はねがはえたよ！」「おおきくなったよ！」「あおくなった！」）。
3. 子どもに対して喜びのリアクションをする。

Output JSON format:
{{
  "description": "身体的な変化の短い説明（日本語）",
  "reaction": "子どもへの興奮したメッセージ（日本語、ひらがな多め、HTML禁止）"
}}
"""


@dataclass(frozen=True)
class EvolutionResult:
    character: Character
    reaction: str
    used_fallback: bool = False


class VersionLineage:
    """Creates first versions and appends evolutions."""

    def __init__(
        self,
        store: CharacterStore,
        oracle: LanguageOracle,
        *,
        speech: SpeechIO | None = None,
        resizer: Callable[[str], str] = resize_image,
    ) -> None:
        self.store = store
        self.oracle = oracle
        self.speech = speech
        self.resizer = resizer

    def _resize(self, image: str) -> str:
        try:
            return self.resizer(image)
        except CaptureError:
            logger.warning("Could not resize drawing; keeping it as captured", exc_info=True)
            return image

    def birth(
        self,
        settings: CharacterSettings,
        image: str,
        recognition_text: str,
    ) -> Character:
        """Build (but do not persist) a freshly set-up character."""
        if not settings.is_complete:
            raise ValueError("setup is not complete; every setting must be filled in")
        version = CharacterVersion(
            version_number=1,
            image_url=self._resize(image),
            description=BIRTH_DESCRIPTION,
            ai_recognition_text=recognition_text,
        )
        return Character(
            settings=settings,
            versions=[version],
            current_version_index=0,
            is_setup_complete=True,
            conversation_history=[],
        )

    async def _ask(self, character: Character, new_image: str) -> tuple[EvolutionReply, bool]:
        settings = character.settings
        previous = character.current_version.description or FIRST_FORM
        prompt = _EVOLVE_PROMPT.format(
            name=settings.name,
            species=settings.species,
            previous=previous,
        )
        try:
            return await self.oracle.extract(prompt, EvolutionReply, image=new_image), False
        except CollaboratorError:
            logger.warning("Evolution analysis failed for %s", character.id, exc_info=True)
            return FALLBACK_EVOLUTION, True

    async def evolve(self, character: Character, new_image: str) -> EvolutionResult:
        """Layer *new_image* onto *character* as its next version.

        A failing language call never aborts the append; fixed text is used
        instead. Storage errors propagate.
        """
        reply, used_fallback = await self._ask(character, new_image)

        version = CharacterVersion(
            version_number=len(character.versions) + 1,
            image_url=self._resize(new_image),
            description=reply.description,
            ai_recognition_text=reply.description,
        )
        versions = [*character.versions, version]
        updated = character.model_copy(update={
            "versions": versions,
            "current_version_index": len(versions) - 1,
            "conversation_history": [
                *character.conversation_history,
                ChatMessage.reply(reply.reaction),
            ],
        })
        self.store.upsert(updated)
        logger.info(
            "Character %s evolved to version %d", updated.id, version.version_number
        )

        if self.speech is not None:
            self.speech.speak(reply.reaction)
        return EvolutionResult(updated, reply.reaction, used_fallback)
