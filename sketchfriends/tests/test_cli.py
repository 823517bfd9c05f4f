"""Tests for the CLI entry point."""

from __future__ import annotations

import re
from collections.abc import Callable
from pathlib import Path
from typing import Any
from unittest.mock import patch

import pytest
from click.testing import CliRunner
from PIL import Image

from sketchfriends.cli import main
from sketchfriends.models import Character, ChatMessage, EvolutionReply
from sketchfriends.store import CharacterStore, StorageError

MakeCharacter = Callable[..., Character]


@pytest.fixture(autouse=True)
def _env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    for key in (
        "SKETCHFRIENDS_STORE",
        "SKETCHFRIENDS_SPEAK",
        "SKF_PROVIDER",
        "SKF_MODEL",
    ):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("SKETCHFRIENDS_HOME", str(tmp_path / "home"))
    monkeypatch.setenv("SKETCHFRIENDS_CONTINUATION_DELAY", "0")


@pytest.fixture
def disk_store(tmp_path: Path) -> CharacterStore:
    return CharacterStore.at(tmp_path / "home" / "characters.json")


@pytest.fixture
def drawing(tmp_path: Path) -> Path:
    path = tmp_path / "drawing.png"
    Image.new("RGB", (40, 30), (255, 200, 0)).save(path)
    return path


def test_list_empty() -> None:
    result = CliRunner().invoke(main, ["list"])
    assert result.exit_code == 0
    assert "まだ ともだちが いないよ" in result.output


def test_list_characters(disk_store: CharacterStore, make_character: MakeCharacter) -> None:
    c = disk_store.upsert(make_character(versions=2))
    result = CliRunner().invoke(main, ["list"])
    assert result.exit_code == 0
    assert c.id in result.output
    assert "レオ (ライオン)" in result.output
    assert "v2/2" in result.output


def test_list_unreadable_store(tmp_path: Path) -> None:
    path = tmp_path / "home" / "characters.json"
    path.parent.mkdir(parents=True)
    path.write_text("{broken", encoding="utf-8")
    result = CliRunner().invoke(main, ["list"])
    assert result.exit_code == 1
    assert "よみこめませんでした" in result.output


def test_show_history_newest_first(
    disk_store: CharacterStore, make_character: MakeCharacter
) -> None:
    c = disk_store.upsert(make_character(versions=3))
    result = CliRunner().invoke(main, ["show", c.id])
    assert result.exit_code == 0
    lines = [line for line in result.output.splitlines() if "バージョン" in line]
    assert re.findall(r"バージョン (\d+)", result.output) == ["3", "2", "1"]
    assert lines[0].lstrip().startswith("*")
    assert "すきなたべもの: にく" in result.output


def test_show_unknown() -> None:
    result = CliRunner().invoke(main, ["show", "ghost"])
    assert result.exit_code == 1
    assert "みつかりません" in result.output


def test_unknown_provider() -> None:
    result = CliRunner().invoke(main, ["--provider", "nope", "list"])
    assert result.exit_code == 1
    assert "Unknown provider: nope" in result.output


def test_text_only_provider_warns() -> None:
    result = CliRunner().invoke(main, ["--provider", "deepseek", "list"])
    assert result.exit_code == 0
    assert "cannot look at drawings" in result.output


def test_delete_with_yes(disk_store: CharacterStore, make_character: MakeCharacter) -> None:
    c = disk_store.upsert(make_character())
    result = CliRunner().invoke(main, ["delete", c.id, "--yes"])
    assert result.exit_code == 0
    assert disk_store.get(c.id) is None


def test_delete_declined(disk_store: CharacterStore, make_character: MakeCharacter) -> None:
    c = disk_store.upsert(make_character())
    result = CliRunner().invoke(main, ["delete", c.id], input="n\n")
    assert result.exit_code == 0
    assert "ほんとうに さよならする？" in result.output
    assert disk_store.get(c.id) is not None


def test_delete_unknown() -> None:
    result = CliRunner().invoke(main, ["delete", "ghost", "-y"])
    assert result.exit_code == 1


_ANSWERS = "ライオン\nレオ\nはやくはしる\nにく\nゆい\n"


def _script_setup(oracle: Any, setup_reply: Callable[..., dict[str, Any]]) -> None:
    oracle.descriptions.append("きいろい まる")
    for answer in _ANSWERS.split():
        oracle.records.append(setup_reply("おしえて？"))
        oracle.records.append(setup_reply(f"{answer}！", answer))


class _FailingBackend:
    def __init__(self, failures: int) -> None:
        self.failures = failures
        self.records: dict[str, Any] = {}

    def read_all(self) -> dict[str, Any]:
        return dict(self.records)

    def write_all(self, records: dict[str, Any]) -> None:
        if self.failures:
            self.failures -= 1
            raise StorageError("quota exceeded")
        self.records = dict(records)


def test_create_runs_setup(
    oracle: Any,
    setup_reply: Callable[..., dict[str, Any]],
    disk_store: CharacterStore,
    drawing: Path,
) -> None:
    _script_setup(oracle, setup_reply)
    with patch("sketchfriends.cli.LiteLLMOracle", return_value=oracle):
        result = CliRunner().invoke(main, ["create", str(drawing)], input=_ANSWERS)

    assert result.exit_code == 0, result.output
    assert "うまれたよ！ レオ" in result.output
    [c] = disk_store.list()
    assert c.settings.original_species == "きいろい まる"
    assert c.settings.child_name == "ゆい"


def test_create_rejects_non_image(tmp_path: Path) -> None:
    path = tmp_path / "notes.txt"
    path.write_text("hello", encoding="utf-8")
    result = CliRunner().invoke(main, ["create", str(path)])
    assert result.exit_code == 1
    assert "えが よめなかったよ" in result.output


def test_chat_three_turns(
    oracle: Any, disk_store: CharacterStore, make_character: MakeCharacter
) -> None:
    friends = [disk_store.upsert(make_character()) for _ in range(2)]
    oracle.descriptions.extend(["がおー", "にくが すき", "バイバイ！"])

    with patch("sketchfriends.cli.LiteLLMOracle", return_value=oracle):
        result = CliRunner().invoke(
            main, ["chat", friends[0].id], input="やあ\nなにがすき？\nまたね\n"
        )

    assert result.exit_code == 0, result.output
    assert "こんにちは ゆいちゃん！ あそぼう！" in result.output
    assert "バイバイ！" in result.output
    assert "またあそぼうね！" in result.output
    assert friends[1].id in result.output
    history = disk_store.require(friends[0].id).conversation_history
    assert [m.role for m in history] == ["user", "model"] * 3


def test_chat_unknown() -> None:
    result = CliRunner().invoke(main, ["chat", "ghost"])
    assert result.exit_code == 1


def test_evolve_appends_version(
    oracle: Any,
    disk_store: CharacterStore,
    make_character: MakeCharacter,
    drawing: Path,
) -> None:
    c = disk_store.upsert(
        make_character().model_copy(update={"conversation_history": [ChatMessage.user("やあ")]})
    )
    oracle.records.append(EvolutionReply(description="はねがはえたよ！", reaction="とべるよ！"))

    with patch("sketchfriends.cli.LiteLLMOracle", return_value=oracle):
        result = CliRunner().invoke(main, ["evolve", c.id, str(drawing)])

    assert result.exit_code == 0, result.output
    assert "バージョン 2: はねがはえたよ！" in result.output
    updated = disk_store.require(c.id)
    assert updated.current_version_index == 1
    assert updated.conversation_history[-1].text == "とべるよ！"


def test_create_retries_failed_save(
    oracle: Any, setup_reply: Callable[..., dict[str, Any]], drawing: Path
) -> None:
    _script_setup(oracle, setup_reply)
    backend = _FailingBackend(failures=1)

    with (
        patch("sketchfriends.cli.LiteLLMOracle", return_value=oracle),
        patch("sketchfriends.cli._store", return_value=CharacterStore(backend)),
    ):
        result = CliRunner().invoke(main, ["create", str(drawing)], input=_ANSWERS + "y\n")

    assert result.exit_code == 0, result.output
    assert "保存容量がいっぱいです" in result.output
    assert "うまれたよ！ レオ" in result.output
    assert len(backend.records) == 1


def test_create_declined_retry_shows_settings(
    oracle: Any, setup_reply: Callable[..., dict[str, Any]], drawing: Path
) -> None:
    _script_setup(oracle, setup_reply)
    backend = _FailingBackend(failures=5)

    with (
        patch("sketchfriends.cli.LiteLLMOracle", return_value=oracle),
        patch("sketchfriends.cli._store", return_value=CharacterStore(backend)),
    ):
        result = CliRunner().invoke(main, ["create", str(drawing)], input=_ANSWERS + "n\n")

    assert result.exit_code == 1
    assert "レオ (ライオン) はやくはしる / にく / ゆい" in result.output
    assert "ほぞんできませんでした" in result.output
    assert backend.records == {}
