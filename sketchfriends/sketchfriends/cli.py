"""CLI entry point for sketchfriends."""

from __future__ import annotations

import asyncio
import logging
import sys
from dataclasses import replace
from typing import TYPE_CHECKING, NoReturn

import click

from sketchfriends.config import Config
from sketchfriends.models import Character
from sketchfriends.oracle import LiteLLMOracle
from sketchfriends.speech import EdgeTTSSynthesizer, SpeechIO
from sketchfriends.store import CharacterNotFoundError, CharacterStore, StorageError

if TYPE_CHECKING:
    from sketchfriends.lineage import EvolutionResult
    from sketchfriends.setup_dialogue import SetupDialogue

STORAGE_FULL = "保存容量がいっぱいです！古いお友達を消してください。"
UNREADABLE_STORE = "ともだちを よみこめませんでした"
NOT_FOUND = "キャラクターがみつかりません"
NO_DRAWING = "えが よめなかったよ。もういちど とってね。"
NOT_SAVED = "ともだちを ほぞんできませんでした"


def _store(config: Config) -> CharacterStore:
    return CharacterStore.at(config.store_path)


def _speech(config: Config) -> SpeechIO:
    synthesizer = EdgeTTSSynthesizer(config.voice_dir) if config.speak else None
    return SpeechIO(synthesizer, locale=config.locale)


def _say(speaker: str, text: str) -> None:
    click.echo(f"{speaker}: {text}")


def _notice(text: str) -> None:
    click.secho(text, fg="yellow", err=True)


def _fail(message: str, detail: object | None = None) -> NoReturn:
    click.secho(message, fg="red", err=True)
    if detail is not None:
        click.echo(f"  {detail}", err=True)
    sys.exit(1)


async def _read_line(label: str, speech: SpeechIO) -> str:
    await speech.wait_spoken()
    return click.prompt(label, default="", show_default=False, prompt_suffix="> ")


def _require(store: CharacterStore, character_id: str) -> Character:
    try:
        return store.require(character_id)
    except CharacterNotFoundError:
        _fail(NOT_FOUND, character_id)
    except StorageError as exc:
        _fail(UNREADABLE_STORE, exc)


def _load_image(path: str) -> str:
    from sketchfriends.images import CaptureError, load_drawing

    try:
        return load_drawing(path)
    except CaptureError as exc:
        _fail(NO_DRAWING, exc)


@click.group()
@click.option("--provider", default=None, help="LLM provider (google/openai/anthropic/glm/deepseek/siliconflow/openrouter)")
@click.option("--model", "-m", default=None, help="LLM model (e.g. gemini/gemini-2.0-flash)")
@click.option("--api-base", default=None, help="LLM API base URL")
@click.option("--api-key", default=None, help="LLM API key")
@click.option("--speak/--no-speak", default=None, help="Write spoken replies as MP3 files (needs edge-tts)")
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
@click.pass_context
def main(
    ctx: click.Context,
    provider: str | None,
    model: str | None,
    api_base: str | None,
    api_key: str | None,
    speak: bool | None,
    verbose: bool,
) -> None:
    """sketchfriends — drawings that become talking friends."""
    from llmkit import get_provider, list_providers

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    config = Config.from_env()

    # Build LLM overrides from CLI flags
    llm_overrides: dict[str, object] = {}
    if provider:
        pinfo = get_provider(provider)
        if not pinfo:
            click.echo(f"Unknown provider: {provider}")
            click.echo(f"Available: {', '.join(list_providers())}")
            sys.exit(1)
        if pinfo.api_base:
            llm_overrides["api_base"] = pinfo.api_base
        if not model:
            llm_overrides["model"] = pinfo.default_model
        llm_overrides["provider"] = provider
    if model:
        llm_overrides["model"] = model
    if api_base:
        llm_overrides["api_base"] = api_base
    if api_key:
        llm_overrides["api_key"] = api_key
    if llm_overrides:
        config = replace(config, llm=replace(config.llm, **llm_overrides))
    if speak is not None:
        config = replace(config, speak=speak)

    if not config.llm.supports_vision:
        _notice(f"{config.llm.provider} cannot look at drawings; fallback text will be used.")
    ctx.obj = config


@main.command("list")
@click.pass_obj
def list_characters(config: Config) -> None:
    """Show every friend."""
    try:
        characters = _store(config).list()
    except StorageError as exc:
        _fail(UNREADABLE_STORE, exc)
    if not characters:
        click.echo("まだ ともだちが いないよ！ えをかいて、ともだちを つくろう")
        return
    for c in characters:
        click.echo(
            f"{c.id}  {c.settings.name} ({c.settings.species})  "
            f"v{c.current_version.version_number}/{len(c.versions)}"
        )


@main.command()
@click.argument("character_id")
@click.pass_obj
def show(config: Config, character_id: str) -> None:
    """Show one friend and its evolution history."""
    character = _require(_store(config), character_id)
    s = character.settings
    click.echo(f"{s.name} ({s.species})")
    click.echo(f"  とくいなこと: {s.ability}")
    click.echo(f"  すきなたべもの: {s.favorite_food}")
    click.echo(f"  かいたひと: {s.child_name}")
    click.echo(f"  おはなし: {len(character.conversation_history)}")
    click.echo("\nしんかの きろく")
    for index in reversed(range(len(character.versions))):
        version = character.versions[index]
        marker = "*" if index == character.current_version_index else " "
        click.echo(
            f" {marker} バージョン {version.version_number}  "
            f"{version.created_at:%Y-%m-%d}  {version.description}"
        )


@main.command()
@click.argument("image", type=click.Path(exists=True, dir_okay=False))
@click.pass_obj
def create(config: Config, image: str) -> None:
    """Turn a drawing into a new friend through a short dialogue."""
    drawing = _load_image(image)
    click.echo("うまれるよ...")
    try:
        character = asyncio.run(_create(config, drawing))
    except KeyboardInterrupt:
        character = None
    except StorageError as exc:
        _fail(STORAGE_FULL, exc)
    if character is None:
        click.echo("\nまたね！")
        return
    click.echo(f"\nうまれたよ！ {character.settings.name} ({character.id})")


async def _create(config: Config, drawing: str) -> Character | None:
    from sketchfriends.images import resize_image
    from sketchfriends.setup_dialogue import AdvanceResult, SetupDialogue, drive_setup

    speech = _speech(config)
    dialogue = SetupDialogue(
        drawing,
        oracle=LiteLLMOracle(config.llm),
        store=_store(config),
        speech=speech,
        resizer=lambda data: resize_image(data, config.image_max_width),
    )

    def show_result(result: AdvanceResult) -> None:
        _say(dialogue.settings.name or "?", result.reply)
        if result.notice:
            _notice(result.notice)

    try:
        character = await drive_setup(
            dialogue,
            lambda: _read_line("こたえ", speech),
            delay=config.continuation_delay,
            on_result=show_result,
        )
    except StorageError as exc:
        character = _save_again(dialogue, exc)
    except click.Abort:
        dialogue.cancel()
        return None
    except asyncio.CancelledError:
        dialogue.cancel()
        raise
    await speech.wait_spoken()
    return character


def _save_again(dialogue: SetupDialogue, error: StorageError) -> Character:
    """Offer to store a finished character again; show its settings if declined."""
    if dialogue.character is None:
        raise error
    while True:
        _notice(STORAGE_FULL)
        click.echo(f"  {error}", err=True)
        if not click.confirm("もういちど ほぞんする？", default=True):
            break
        try:
            return dialogue.save()
        except StorageError as exc:
            error = exc
    s = dialogue.character.settings
    click.echo(f"{s.name} ({s.species}) {s.ability} / {s.favorite_food} / {s.child_name}")
    _fail(NOT_SAVED)


@main.command()
@click.argument("character_id")
@click.pass_obj
def chat(config: Config, character_id: str) -> None:
    """Talk with a friend for a few turns."""
    store = _store(config)
    _require(store, character_id)
    try:
        asyncio.run(_chat(config, store, character_id))
    except KeyboardInterrupt:
        click.echo("\nまたね！")
    except StorageError as exc:
        _fail(STORAGE_FULL, exc)


async def _chat(config: Config, store: CharacterStore, character_id: str) -> None:
    from sketchfriends.chat import NEXT_FRIEND_PROMPT, ChatSession

    speech = _speech(config)
    session = ChatSession(store, LiteLLMOracle(config.llm), speech=speech)
    character = session.open(character_id)
    name = character.settings.name or "?"

    for message in session.messages[-6:]:
        _say(name if message.role == "model" else "きみ", message.text)
    if session.greeting:
        _say(name, session.greeting)

    try:
        while not session.ended:
            text = (await _read_line("きみ", speech)).strip()
            if not text:
                continue
            click.echo("かんがえ中...")
            result = await session.send(text)
            _say(name, result.reply)
    except click.Abort:
        session.close()
        click.echo("\nまたね！")
        return
    except asyncio.CancelledError:
        session.close()
        raise

    await speech.wait_spoken()
    click.echo("\nまたあそぼうね！")
    others = session.suggestions()
    if others:
        click.echo(NEXT_FRIEND_PROMPT)
        for other in others:
            click.echo(f"  {other.id}  {other.settings.name}")


@main.command()
@click.argument("character_id")
@click.argument("image", type=click.Path(exists=True, dir_okay=False))
@click.pass_obj
def evolve(config: Config, character_id: str, image: str) -> None:
    """Evolve a friend with a new drawing."""
    store = _store(config)
    character = _require(store, character_id)
    drawing = _load_image(image)
    click.echo("しんか中...")
    try:
        result = asyncio.run(_evolve(config, store, character, drawing))
    except StorageError as exc:
        _fail(STORAGE_FULL, exc)
    current = result.character.current_version
    _say(result.character.settings.name or "?", result.reaction)
    click.echo(f"バージョン {current.version_number}: {current.description}")


async def _evolve(
    config: Config, store: CharacterStore, character: Character, drawing: str
) -> EvolutionResult:
    from sketchfriends.images import resize_image
    from sketchfriends.lineage import VersionLineage

    speech = _speech(config)
    lineage = VersionLineage(
        store,
        LiteLLMOracle(config.llm),
        speech=speech,
        resizer=lambda data: resize_image(data, config.image_max_width),
    )
    result = await lineage.evolve(character, drawing)
    await speech.wait_spoken()
    return result


@main.command()
@click.argument("character_id")
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
@click.pass_obj
def delete(config: Config, character_id: str, yes: bool) -> None:
    """Say goodbye to a friend for good."""
    if not yes and not click.confirm("ほんとうに さよならする？"):
        return
    try:
        removed = _store(config).delete(character_id)
    except StorageError as exc:
        _fail(STORAGE_FULL, exc)
    if not removed:
        _fail(NOT_FOUND, character_id)
    click.echo("さようなら！")


if __name__ == "__main__":
    main()
