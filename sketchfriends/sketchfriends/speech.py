"""Speech I/O adapter.

Synthesis runs as a background task so it can be cut off; recognition is a
single awaitable call that first silences any running synthesis.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import Literal, Protocol

logger = logging.getLogger(__name__)

SpeechState = Literal["start", "end", "error"]

_VOICES: dict[str, str] = {
    "ja-JP": "ja-JP-NanamiNeural",
    "en-US": "en-US-AnaNeural",
}


class SpeechError(Exception):
    """Base class for speech collaborator failures."""


class SpeechUnavailableError(SpeechError):
    """No recognizer is available in this environment."""


class RecognitionError(SpeechError):
    """Listening started but produced no transcript."""


class Synthesizer(Protocol):
    async def speak(self, text: str, *, locale: str) -> None: ...


class Recognizer(Protocol):
    async def listen(self, locale: str) -> str: ...


class SpeechIO:
    """Bridges the engines to the speech collaborators."""

    def __init__(
        self,
        synthesizer: Synthesizer | None = None,
        recognizer: Recognizer | None = None,
        *,
        locale: str = "ja-JP",
        on_state: Callable[[SpeechState], None] | None = None,
    ) -> None:
        self.synthesizer = synthesizer
        self.recognizer = recognizer
        self.locale = locale
        self.on_state = on_state
        self.listening = False
        self._task: asyncio.Task[None] | None = None

    @property
    def speaking(self) -> bool:
        return self._task is not None and not self._task.done()

    def _emit(self, state: SpeechState) -> None:
        if self.on_state is not None:
            self.on_state(state)

    def speak(self, text: str) -> None:
        """Start speaking *text*, replacing whatever is being said."""
        if self.synthesizer is None or not text.strip():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop, not speaking %r", text)
            return
        self.stop_speaking()
        self._task = loop.create_task(self._run(text))

    async def _run(self, text: str) -> None:
        assert self.synthesizer is not None
        self._emit("start")
        try:
            await self.synthesizer.speak(text, locale=self.locale)
        except asyncio.CancelledError:
            self._emit("end")
            raise
        except Exception:
            logger.warning("Speech synthesis failed", exc_info=True)
            self._emit("error")
            return
        self._emit("end")

    def stop_speaking(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def wait_spoken(self) -> None:
        """Wait until the current utterance has finished (or was cancelled)."""
        if self._task is None:
            return
        with contextlib.suppress(asyncio.CancelledError):
            await self._task

    async def listen(self) -> str:
        """Listen once and return the transcript.

        Raises SpeechUnavailableError when no recognizer is configured and
        RecognitionError when listening fails or another listen is active.
        """
        self.stop_speaking()
        if self.recognizer is None:
            raise SpeechUnavailableError("speech recognition is not supported here")
        if self.listening:
            raise RecognitionError("already listening")
        self.listening = True
        try:
            transcript = await self.recognizer.listen(self.locale)
        except SpeechError:
            raise
        except Exception as exc:
            raise RecognitionError(str(exc)) from exc
        finally:
            self.listening = False
        return transcript.strip()


class EdgeTTSSynthesizer:
    """Microsoft Edge neural TTS — writes one MP3 per utterance.

    Requires: pip install edge-tts
    """

    def __init__(self, out_dir: Path, *, voice: str | None = None, pitch: str = "+20Hz") -> None:
        self.out_dir = out_dir
        self.voice = voice
        self.pitch = pitch
        self._count = 0

    async def speak(self, text: str, *, locale: str) -> None:
        import edge_tts

        voice = self.voice or _VOICES.get(locale, _VOICES["ja-JP"])
        self.out_dir.mkdir(parents=True, exist_ok=True)
        self._count += 1
        path = self.out_dir / f"{datetime.now():%Y%m%d-%H%M%S}-{self._count:03d}.mp3"

        communicate = edge_tts.Communicate(text, voice, pitch=self.pitch)
        await communicate.save(str(path))
        logger.debug("Spoke %d chars to %s", len(text), path)
