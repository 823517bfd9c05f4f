"""Guided setup dialogue — turns a child's answers into character settings.

The dialogue walks IDENTITY → NAME → ABILITY → FOOD → CHILD_NAME → COMPLETE,
fixing exactly one setting per stage.  The language model decides whether an
answer is usable; the engine only sequences the stages and never goes back.
Reaching COMPLETE creates and stores the character.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable, Iterator
from dataclasses import dataclass
from typing import Literal

from sketchfriends.images import resize_image
from sketchfriends.lineage import VersionLineage
from sketchfriends.models import Character, CharacterSettings, SetupReply, SetupStage
from sketchfriends.oracle import CollaboratorError, LanguageOracle
from sketchfriends.speech import SpeechIO
from sketchfriends.store import CharacterStore

logger = logging.getLogger(__name__)

APOLOGY = "あれれ？ めがまわっちゃった。\nもういっかい いってくれる？"
MISHEARD_NOTICE = "あれ？よくきこえなかったよ。"
UNKNOWN_DRAWING = "ふしぎな おともだち"

# ---------------------------------------------------------------------------
# Prompts
# ---------------------------------------------------------------------------

_RECOGNITION_PROMPT = (
    "この絵が何に見えるか、幼児向けの簡単な日本語（ひらがな多め）で、"
    "20文字以内で説明してください。"
)

_STAGE_CONTEXT: dict[SetupStage, str] = {
    SetupStage.IDENTITY: """\
あなたは絵から生まれたばかりのキャラクターです。
目標: 「ぼくは、なあに？」と聞いて、自分の正体（動物、乗り物、食べ物など何でも）を教えてもらってください。
子どもが答え（例：「ライオン」「ロボット」）を言ったら、それを嬉しそうに受け入れてください。""",
    SetupStage.NAME: """\
コンテキスト: あなたの正体は「{species}」だと分かりました。
目標: 「ぼくのなまえは なあに？」と聞いてください。""",
    SetupStage.ABILITY: """\
コンテキスト: あなたは「{species}」の「{name}」です。
目標: 「ぼくは なにが とくいかな？」（例：はしるのがはやい、そらをとべる、へんしんできる）と聞いてください。
{species}に合った得意なことを聞き出してください。""",
    SetupStage.FOOD: """\
コンテキスト: あなたは「{name}」です。「{ability}」が得意です。
目標: 「ぼくの すきなたべものは なあに？」と聞いてください。""",
    SetupStage.CHILD_NAME: """\
コンテキスト: あなたは「{favorite_food}」が大好きです。
目標: 「きみの おなまえは？」と聞いてください。""",
}

_SYSTEM = """\
あなたは3〜6歳の幼児と話すキャラクターです。
口調: 元気よく、簡単な言葉（ひらがな中心）、優しく、励ますように。一人称は「ぼく」。

手順:
1. CHILD_INPUT を読む。
2. CHILD_INPUT が無い（最初のターン）なら、挨拶をして「目標」の質問をする。
3. CHILD_INPUT があれば、それを暖かく受け止める。
4. 今の質問への答えを取り出して extractedValue に入れる。分からなければ null。
5. 使える答えが得られたら isSatisfied を true にする。
6. replyToChild には答えへのリアクションを入れる。

{context}

ルール:
- HTMLタグ（<br>など）は使わない。改行は \\n で書く。
- 子どもの答えはいつも受け入れる。ただの丸を「ドラゴン」と言ったら、それはドラゴン。
- どうぶつ以外（ロボット、車、おばけなど）も全部受け入れる。
- 返答は短く（25単語以内）。
- 日本語で話す。
- JSON で {{"replyToChild": string, "extractedValue": string | null, "isSatisfied": boolean}} だけを返す。
"""


def _system_prompt(stage: SetupStage, settings: CharacterSettings) -> str:
    context = _STAGE_CONTEXT[stage].format(**settings.model_dump())
    return _SYSTEM.format(context=context)


def _child_input(utterance: str) -> str:
    if utterance:
        return f'CHILD_INPUT: "{utterance}"'
    return "CHILD_INPUT: (Silence/Start)"


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class EngineBusyError(RuntimeError):
    """A collaborator call is already in flight for this engine."""


class SetupFinishedError(RuntimeError):
    """The dialogue already reached COMPLETE."""


@dataclass(frozen=True)
class TranscriptLine:
    role: Literal["user", "model"]
    text: str


@dataclass(frozen=True)
class AdvanceResult:
    """Outcome of one setup turn.

    ``needs_continuation`` asks the caller to issue ``advance("")`` after a
    short pause so the next question is asked without waiting for input.
    """

    reply: str
    stage: SetupStage
    needs_continuation: bool = False
    committed: str | None = None
    character: Character | None = None
    notice: str | None = None
    discarded: bool = False


class SetupDialogue:
    """State machine for one setup run over one captured drawing."""

    def __init__(
        self,
        image: str,
        *,
        oracle: LanguageOracle,
        store: CharacterStore,
        speech: SpeechIO | None = None,
        resizer: Callable[[str], str] = resize_image,
    ) -> None:
        self.image = image
        self.oracle = oracle
        self.store = store
        self.speech = speech
        self.lineage = VersionLineage(store, oracle, resizer=resizer)

        self.stage = SetupStage.IDENTITY
        self.settings = CharacterSettings()
        self.transcript: list[TranscriptLine] = []
        self.recognition_text: str | None = None
        self.character: Character | None = None
        self.cancelled = False
        self._busy = False

    @property
    def busy(self) -> bool:
        return self._busy

    @contextlib.contextmanager
    def _in_flight(self) -> Iterator[None]:
        if self._busy:
            raise EngineBusyError("wait for the previous setup turn to finish")
        self._busy = True
        try:
            yield
        finally:
            self._busy = False

    def cancel(self) -> None:
        """Leave the dialogue: silence speech and ignore pending replies."""
        self.cancelled = True
        if self.speech is not None:
            self.speech.stop_speaking()
        logger.info("Setup dialogue cancelled at stage %s", self.stage)

    async def _recognize(self) -> str:
        try:
            text = await self.oracle.describe(_RECOGNITION_PROMPT, image=self.image)
        except CollaboratorError:
            logger.warning("Drawing recognition failed", exc_info=True)
            return UNKNOWN_DRAWING
        return text.strip() or UNKNOWN_DRAWING

    async def begin(self) -> AdvanceResult:
        """Take a first look at the drawing, then ask the first question."""
        with self._in_flight():
            recognition = await self._recognize()
        if self.cancelled:
            return AdvanceResult(reply="", stage=self.stage, discarded=True)
        if self.recognition_text is None:
            self.recognition_text = recognition
            self.settings = self.settings.model_copy(update={"original_species": recognition})
            logger.debug("First impression of the drawing: %s", recognition)
        return await self.advance("")

    async def advance(self, utterance: str = "") -> AdvanceResult:
        """Run one turn of the current stage.

        An empty *utterance* means "ask the question"; otherwise it is the
        child's answer.  Language failures never move the stage.
        """
        if self.stage is SetupStage.COMPLETE:
            raise SetupFinishedError("setup is already complete")

        with self._in_flight():
            stage = self.stage
            if utterance:
                self.transcript.append(TranscriptLine("user", utterance))

            notice: str | None = None
            try:
                reply = await self.oracle.extract(
                    _child_input(utterance),
                    SetupReply,
                    system=_system_prompt(stage, self.settings),
                    image=self.image if stage is SetupStage.IDENTITY else None,
                )
            except CollaboratorError:
                logger.warning("Setup turn failed at stage %s", stage, exc_info=True)
                reply = SetupReply(reply_to_child=APOLOGY, extracted_value=None, is_satisfied=False)
                notice = MISHEARD_NOTICE

        if self.cancelled:
            logger.debug("Discarding %s reply after cancel", stage)
            return AdvanceResult(reply=reply.reply_to_child, stage=self.stage, discarded=True)

        self.transcript.append(TranscriptLine("model", reply.reply_to_child))
        if self.speech is not None:
            self.speech.speak(reply.reply_to_child)

        value = reply.value
        if not (reply.is_satisfied and value):
            return AdvanceResult(reply=reply.reply_to_child, stage=stage, notice=notice)

        settings = self.settings.model_copy(update={stage.field: value})
        next_stage = stage.next()
        if next_stage is SetupStage.COMPLETE:
            self.character = self._build(settings)
            settings = self.character.settings
        self.settings = settings
        self.stage = next_stage
        logger.info("Setup %s = %r, moving to %s", stage, value, self.stage)

        if self.stage is SetupStage.COMPLETE:
            character = self.save()
            return AdvanceResult(
                reply=reply.reply_to_child,
                stage=self.stage,
                committed=value,
                character=character,
            )
        return AdvanceResult(
            reply=reply.reply_to_child,
            stage=self.stage,
            needs_continuation=True,
            committed=value,
        )

    def _build(self, settings: CharacterSettings) -> Character:
        recognition = self.recognition_text or UNKNOWN_DRAWING
        if not settings.original_species:
            settings = settings.model_copy(update={"original_species": recognition})
        return self.lineage.birth(settings, self.image, recognition)

    def save(self) -> Character:
        """Persist the finished character; safe to call again after a storage error."""
        if self.character is None:
            raise RuntimeError("setup has not produced a character yet")
        self.store.upsert(self.character)
        logger.info("Character %s (%s) created", self.character.id, self.settings.name)
        return self.character


async def drive_setup(
    dialogue: SetupDialogue,
    read_utterance: Callable[[], Awaitable[str]],
    *,
    delay: float = 1.0,
    on_result: Callable[[AdvanceResult], None] | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> Character | None:
    """Run *dialogue* to completion.

    Follows ``needs_continuation`` by pausing *delay* seconds and asking the
    next question; otherwise waits on *read_utterance* for the child's answer.
    Returns the created character, or None if the dialogue was cancelled.
    """
    result = await dialogue.begin()
    while True:
        if on_result is not None and not result.discarded:
            on_result(result)
        if result.discarded or dialogue.cancelled:
            return None
        if result.character is not None:
            return result.character

        if result.needs_continuation:
            await sleep(delay)
            result = await dialogue.advance("")
            continue

        utterance = ""
        while not utterance:
            utterance = (await read_utterance()).strip()
            if dialogue.cancelled:
                return None
        result = await dialogue.advance(utterance)
