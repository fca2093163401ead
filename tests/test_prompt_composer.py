"""
Unit tests for character resolution and structured script composition.

Tests cover:
1. Involved characters (explicit references, longest-name-first scan)
2. Dialogue speaker resolution
3. Display name → identity code replacement
4. Script composition and its validation
"""
import sys
import os
import json

import pytest
from pydantic import ValidationError as SchemaError

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from agents.character_resolver import CharacterResolver
from agents.prompt_composer import PromptComposer
from schemas import NO_SPEAKER, DialogueLine, Script, ShotScript
from utils.errors import GenerationError

from conftest import make_character, make_shot


@pytest.fixture
def anna():
    return make_character("c1", "Anna", code="anna01")


@pytest.fixture
def ann():
    return make_character("c2", "Ann", code="ann02")


# ==========================================================================
# Test 1: Involved characters
# ==========================================================================

class TestInvolvedCharacters:
    def test_longer_name_wins(self, anna, ann):
        """'Ann' must not match inside 'Anna'."""
        resolver = CharacterResolver([ann, anna])
        shot = make_shot("sh1", 0, description="Anna waves from the window")
        assert resolver.involved_characters([shot]) == [anna]

    def test_both_names_present(self, anna, ann):
        resolver = CharacterResolver([ann, anna])
        shot = make_shot("sh1", 0, description="Ann meets Anna at the station")
        assert {c.id for c in resolver.involved_characters([shot])} == {"c1", "c2"}

    def test_explicit_references_by_id_and_name(self, anna, ann):
        resolver = CharacterResolver([anna, ann])
        shots = [
            make_shot("sh1", 0, description="An empty street", characters=["c2"]),
            make_shot("sh2", 1, description="Rain", characters=["@Anna"]),
        ]
        assert resolver.involved_characters(shots) == [ann, anna]

    def test_unknown_reference_ignored(self, anna):
        resolver = CharacterResolver([anna])
        shot = make_shot("sh1", 0, description="Nobody", characters=["ghost"])
        assert resolver.involved_characters([shot]) == []

    def test_dialogue_and_narration_scanned(self, anna, ann):
        resolver = CharacterResolver([anna, ann])
        shot = make_shot("sh1", 0, description="Wide view", dialogue="Ann, wait!")
        assert resolver.involved_characters([shot]) == [ann]

    def test_json_description_uses_visual_field(self, anna):
        resolver = CharacterResolver([anna])
        shot = make_shot("sh1", 0, description=json.dumps({"visual": "Anna runs", "audio": "wind"}))
        assert shot.narrative_text == "Anna runs"
        assert resolver.involved_characters([shot]) == [anna]


# ==========================================================================
# Test 2: Speaker
# ==========================================================================

class TestSpeaker:
    def test_first_explicit_reference(self, anna, ann):
        resolver = CharacterResolver([anna, ann])
        shot = make_shot("sh1", 0, description="Anna listens", dialogue="Hello", characters=["c2", "c1"])
        assert resolver.resolve_speaker(shot) == ann

    def test_scan_fallback(self, anna, ann):
        resolver = CharacterResolver([anna, ann])
        shot = make_shot("sh1", 0, description="Anna smiles", dialogue="Hello")
        assert resolver.resolve_speaker(shot) == anna

    def test_single_letter_name_not_a_speaker(self):
        j = make_character("c9", "J", code="jay")
        resolver = CharacterResolver([j])
        shot = make_shot("sh1", 0, description="J enters", dialogue="Hi")
        assert resolver.resolve_speaker(shot) is None

    def test_no_match(self, anna):
        resolver = CharacterResolver([anna])
        assert resolver.resolve_speaker(make_shot("sh1", 0, description="A door", dialogue="Hi")) is None


# ==========================================================================
# Test 3: Name replacement
# ==========================================================================

class TestReplaceNames:
    def test_bare_and_at_names(self, anna):
        resolver = CharacterResolver([anna])
        assert resolver.replace_names("Anna nods. @Anna smiles.") == "@anna01 nods. @anna01 smiles."

    def test_longest_first(self, anna, ann):
        resolver = CharacterResolver([ann, anna])
        assert resolver.replace_names("Anna and Ann") == "@anna01 and @ann02"

    def test_ascii_word_boundary(self, ann):
        resolver = CharacterResolver([ann])
        assert resolver.replace_names("Annabelle Annex") == "Annabelle Annex"

    def test_cjk_neighbours_allowed(self):
        minsu = make_character("c3", "민수", code="minsu")
        resolver = CharacterResolver([minsu])
        assert resolver.replace_names("민수가 웃는다") == "@minsu가 웃는다"

    def test_unregistered_left_alone(self):
        bob = make_character("c4", "Bob")
        resolver = CharacterResolver([bob])
        assert resolver.replace_names("Bob sits") == "Bob sits"


# ==========================================================================
# Test 4: Composition
# ==========================================================================

class TestCompose:
    def test_structured_script(self, anna, ann, scene):
        resolver = CharacterResolver([anna, ann])
        chunk = [
            make_shot("sh1", 0, description="Anna looks at Ann", shot_size="Close Up",
                      camera_movement="Dolly In", dialogue="Ann, come here", characters=["c1"]),
            make_shot("sh2", 1, description="Rain falls", duration=20),
        ]
        script = PromptComposer().compose(chunk, [anna, ann], scene, resolver, art_style="watercolor")

        assert script.character_settings == {"@anna01": "Anna appearance", "@ann02": "Ann appearance"}
        first, second = script.shots
        assert first.action == "[Close Up] @anna01 looks at @ann02"
        assert first.camera == "Dolly In"
        assert first.dialogue.speaker_code == "@anna01"
        assert first.dialogue.text == "@ann02, come here"
        assert first.location == "Rooftop at night"
        assert first.style[0] == "watercolor"

        assert second.action == "[Medium Shot] Rain falls"
        assert second.camera == "Static"
        assert second.dialogue.speaker_code == NO_SPEAKER
        assert second.duration == 15

    def test_display_names_never_keys(self, anna, scene):
        resolver = CharacterResolver([anna])
        script = PromptComposer().compose([make_shot("sh1", 0, description="Anna")], [anna], scene, resolver)
        assert all(key.startswith("@") for key in script.character_settings)
        assert "Anna" not in script.character_settings

    def test_settings_hold_appearance_only(self, scene):
        """The description never leaks into character settings, even when appearance is empty."""
        plain = make_character("c5", "Mira", code="mira")
        plain.appearance = ""
        resolver = CharacterResolver([plain])
        script = PromptComposer().compose([make_shot("sh1", 0, description="Mira")], [plain], scene, resolver)
        assert script.character_settings["@mira"] == ""

    def test_unknown_location(self, anna, scene):
        scene.location = ""
        resolver = CharacterResolver([anna])
        script = PromptComposer().compose([make_shot("sh1", 0, description="Anna")], [anna], scene, resolver)
        assert script.shots[0].location == "Unknown"

    def test_unregistered_character_rejected(self, anna, scene):
        bob = make_character("c4", "Bob")
        resolver = CharacterResolver([anna, bob])
        with pytest.raises(GenerationError) as exc:
            PromptComposer().compose([make_shot("sh1", 0, description="Bob")], [anna, bob], scene, resolver)
        assert exc.value.stage == "compose"
        assert "Bob" in str(exc.value)

    def test_payload_is_json(self, anna, scene):
        resolver = CharacterResolver([anna])
        script = PromptComposer().compose([make_shot("sh1", 0, description="Anna")], [anna], scene, resolver)
        payload = json.loads(script.to_payload())
        assert payload["shots"][0]["dialogue"]["speaker_code"] == "none"

    def test_reference_prompts(self, anna):
        composer = PromptComposer()
        assert "Anna" in composer.reference_prompt(anna)
        assert "not a real person" in composer.stylized_reference_prompt(anna)


class TestScriptValidation:
    def test_speaker_must_have_setting(self):
        with pytest.raises(SchemaError):
            Script(
                character_settings={"@a": "look"},
                shots=[ShotScript(action="x", duration=5, dialogue=DialogueLine(speaker_code="@b", text="hi"))],
            )

    def test_keys_must_be_references(self):
        with pytest.raises(SchemaError):
            Script(character_settings={"Anna": "look"}, shots=[ShotScript(action="x", duration=5)])

    def test_at_least_one_shot(self):
        with pytest.raises(SchemaError):
            Script(character_settings={}, shots=[])
