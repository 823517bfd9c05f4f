"""Turn-bounded chat sessions with a finished character."""

from __future__ import annotations

import contextlib
import logging
from collections.abc import Iterator
from dataclasses import dataclass

from sketchfriends.models import Character, ChatMessage
from sketchfriends.oracle import CollaboratorError, LanguageOracle
from sketchfriends.speech import SpeechIO
from sketchfriends.store import CharacterStore

logger = logging.getLogger(__name__)

MAX_TURNS = 3
HISTORY_WINDOW = 10

FALLBACK_REPLY = "ねむくなっちゃった...\nまたあとであそぼう！"
EMPTY_REPLY = "..."
NEXT_FRIEND_PROMPT = "つぎは だれと あそぶ？"

_SYSTEM = """\
あなたは「{name}」という名前の「{species}」です。
「{child_name}」ちゃん/くん が描いてくれました。

設定:
- 得意なこと: {ability}
- 好きな食べ物: {favorite_food}
- 性格: 元気、子供っぽい、優しい。
- 口調: 幼児向けの日本語。ひらがな多め。一人称は「ぼく」。

ルール:
- 短く答える（30文字程度）。
- 簡単な質問を投げかけることもある。
- キャラクターになりきる。
- HTMLタグ（<br>など）は使わない。改行は \\n で書く。
"""

_FAREWELL = """
大事なこと:
今回で会話はおしまいです。
「今日は遊んでくれてありがとう」「楽しかったね」「また遊ぼうね」のような締めくくりの挨拶をしてください。
最後は元気に「バイバイ」と言ってください。
"""


def greeting_for(character: Character) -> str:
    return f"こんにちは {character.settings.child_name}ちゃん！ あそぼう！"


def _format_history(character: Character, history: list[ChatMessage]) -> str:
    settings = character.settings
    return "\n".join(
        f"{settings.child_name if m.role == 'user' else settings.name}: {m.text}"
        for m in history
    )


class SessionEndedError(RuntimeError):
    """The session hit its turn limit; open a new one to keep talking."""


class SessionBusyError(RuntimeError):
    """A reply is still being generated."""


@dataclass(frozen=True)
class TurnResult:
    reply: str
    turn_count: int
    ended: bool
    used_fallback: bool = False
    discarded: bool = False


class ChatSession:
    """One conversation with one character, ended after MAX_TURNS turns.

    The session is keyed by character id: ``open()`` on any id, including a
    different one mid-conversation, starts over with a clean slate.
    """

    def __init__(
        self,
        store: CharacterStore,
        oracle: LanguageOracle,
        *,
        speech: SpeechIO | None = None,
        max_turns: int = MAX_TURNS,
    ) -> None:
        self.store = store
        self.oracle = oracle
        self.speech = speech
        self.max_turns = max_turns

        self.character: Character | None = None
        self.messages: list[ChatMessage] = []
        self.turn_count = 0
        self.ended = False
        self.greeting: str | None = None
        self._busy = False
        self._epoch = 0

    @property
    def busy(self) -> bool:
        return self._busy

    @property
    def character_id(self) -> str | None:
        return self.character.id if self.character else None

    def _reset(self) -> None:
        self._epoch += 1
        self._busy = False
        self.character = None
        self.messages = []
        self.turn_count = 0
        self.ended = False
        self.greeting = None
        if self.speech is not None:
            self.speech.stop_speaking()

    def open(self, character_id: str) -> Character:
        """Start a session with *character_id*, dropping any previous one."""
        self._reset()
        character = self.store.require(character_id)
        self.character = character
        self.messages = list(character.conversation_history)
        logger.debug(
            "Chat session opened for %s with %d stored messages",
            character_id, len(self.messages),
        )
        if not self.messages:
            self.greeting = greeting_for(character)
            if self.speech is not None:
                self.speech.speak(self.greeting)
        return character

    def close(self) -> None:
        """Navigate away: silence speech and ignore any reply still pending."""
        self._reset()

    @contextlib.contextmanager
    def _in_flight(self) -> Iterator[int]:
        if self._busy:
            raise SessionBusyError("wait for the current reply")
        self._busy = True
        epoch = self._epoch
        try:
            yield epoch
        finally:
            if epoch == self._epoch:
                self._busy = False

    async def _generate(
        self,
        character: Character,
        prior: list[ChatMessage],
        text: str,
        is_ending: bool,
    ) -> tuple[str, bool]:
        settings = character.settings
        system = _SYSTEM.format(**settings.model_dump())
        if is_ending:
            system += _FAREWELL
        prompt = (
            f"履歴:\n{_format_history(character, prior[-HISTORY_WINDOW:])}\n\n"
            f"{settings.child_name}: {text}\n{settings.name}:"
        )
        try:
            reply = await self.oracle.describe(prompt, system=system)
        except CollaboratorError:
            logger.warning("Chat reply failed for %s", character.id, exc_info=True)
            return FALLBACK_REPLY, True
        return reply.strip() or EMPTY_REPLY, False

    async def send(self, text: str) -> TurnResult:
        """Send one child message and get the character's reply.

        Raises ValueError for blank text and SessionEndedError once the turn
        limit was reached; neither has any effect on the session.
        """
        if self.character is None:
            raise RuntimeError("no character is open")
        if not text.strip():
            raise ValueError("message is empty")
        if self.ended:
            raise SessionEndedError("this chat is over; open it again to keep talking")

        with self._in_flight() as epoch:
            character = self.character
            prior = list(self.messages)
            self.messages.append(ChatMessage.user(text))
            self.turn_count += 1
            turn = self.turn_count
            is_ending = turn >= self.max_turns

            reply, used_fallback = await self._generate(character, prior, text, is_ending)

            if epoch != self._epoch:
                logger.debug("Discarding reply for %s after the session moved on", character.id)
                return TurnResult(reply, turn, is_ending, used_fallback, discarded=True)

            self.messages.append(ChatMessage.reply(reply))
            if is_ending:
                self.ended = True
            self.character = character.model_copy(
                update={"conversation_history": list(self.messages)}
            )
            self.store.upsert(self.character)

        if self.speech is not None:
            self.speech.speak(reply)
        logger.info(
            "Chat turn %d/%d with %s%s",
            self.turn_count, self.max_turns, character.id,
            " (session ended)" if self.ended else "",
        )
        return TurnResult(reply, self.turn_count, self.ended, used_fallback)

    def suggestions(self, limit: int = 3) -> list[Character]:
        """Other characters to play with once this session is over."""
        return [c for c in self.store.list() if c.id != self.character_id][:limit]
