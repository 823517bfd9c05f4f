"""sketchfriends — children's drawings that become talking friends."""

from sketchfriends.chat import ChatSession, TurnResult
from sketchfriends.config import Config
from sketchfriends.lineage import EvolutionResult, VersionLineage
from sketchfriends.models import (
    Character,
    CharacterSettings,
    CharacterVersion,
    ChatMessage,
    SetupStage,
)
from sketchfriends.oracle import CollaboratorError, LanguageOracle, LiteLLMOracle
from sketchfriends.setup_dialogue import AdvanceResult, SetupDialogue, drive_setup
from sketchfriends.speech import EdgeTTSSynthesizer, SpeechIO
from sketchfriends.store import CharacterNotFoundError, CharacterStore, StorageError

__all__ = [
    "AdvanceResult",
    "Character",
    "CharacterNotFoundError",
    "CharacterSettings",
    "CharacterStore",
    "CharacterVersion",
    "ChatMessage",
    "ChatSession",
    "CollaboratorError",
    "Config",
    "EdgeTTSSynthesizer",
    "EvolutionResult",
    "LanguageOracle",
    "LiteLLMOracle",
    "SetupDialogue",
    "SetupStage",
    "SpeechIO",
    "StorageError",
    "TurnResult",
    "VersionLineage",
    "drive_setup",
]
