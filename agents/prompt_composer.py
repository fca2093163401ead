"""
Prompt Composer: 청크 하나에 대한 구조화 스크립트를 구성합니다.

스크립트 구성:
1. character_settings: 아이덴티티 코드(@code) → 외형 텍스트 (표시 이름은 키로 쓰지 않음)
2. shots: 샷별 action / camera / dialogue / duration / location / style

등록(registered)되지 않은 캐릭터는 절대 참조하지 않습니다.
호출자는 아이덴티티 등록이 끝난 뒤에 compose() 를 호출해야 합니다.
"""

from typing import Dict, List, Optional, Sequence
from pathlib import Path
import sys

sys.path.append(str(Path(__file__).parent.parent))

from agents.character_resolver import CharacterResolver
from schemas import (
    NO_SPEAKER,
    Character,
    DialogueLine,
    GenerationSettings,
    Scene,
    Script,
    Shot,
    ShotScript,
)
from utils.errors import GenerationError
from utils.logger import get_logger

logger = get_logger("prompt_composer")

DEFAULT_SHOT_SIZE = "Medium Shot"
DEFAULT_CAMERA = "Static"
DEFAULT_LOCATION = "Unknown"


class PromptComposer:
    """Builds the per-chunk structured script and the reference-video prompts."""

    def __init__(self, settings: GenerationSettings = None):
        self.settings = settings or GenerationSettings()

    # =========================================================================
    # Shot script
    # =========================================================================

    def build_character_settings(self, characters: Sequence[Character]) -> Dict[str, str]:
        settings = {}
        for char in characters:
            settings[char.identity.reference] = char.appearance
        return settings

    def style_tags(self, art_style: Optional[str] = None) -> List[str]:
        tags = []
        if art_style:
            tags.append(art_style)
        tags.extend(self.settings.style_tags)
        return tags

    def compose_shot(
        self,
        shot: Shot,
        resolver: CharacterResolver,
        characters: Sequence[Character],
        scene: Scene,
        art_style: Optional[str] = None,
    ) -> ShotScript:
        narrative = resolver.replace_names(shot.narrative_text, characters).strip()
        action = f"[{shot.shot_size or DEFAULT_SHOT_SIZE}] {narrative}".strip()

        speaker_code = NO_SPEAKER
        if shot.dialogue:
            speaker = resolver.resolve_speaker(shot)
            involved = {c.id: c for c in characters}
            if speaker is not None and speaker.id in involved and involved[speaker.id].has_registered_identity:
                speaker_code = involved[speaker.id].identity.reference

        return ShotScript(
            action=action,
            camera=shot.camera_movement or DEFAULT_CAMERA,
            dialogue=DialogueLine(
                speaker_code=speaker_code,
                text=resolver.replace_names(shot.dialogue, characters) if shot.dialogue else "",
            ),
            duration=min(shot.duration, self.settings.max_shot_seconds),
            location=scene.location or DEFAULT_LOCATION,
            style=self.style_tags(art_style),
        )

    def compose(
        self,
        chunk: Sequence[Shot],
        characters: Sequence[Character],
        scene: Scene,
        resolver: CharacterResolver,
        art_style: Optional[str] = None,
    ) -> Script:
        """
        Compose the structured script for one chunk.

        Args:
            chunk: Ordered shots of the chunk
            characters: Characters involved in the scene (all must be registered)
            scene: Owning scene (location text)
            resolver: Resolver over the project roster
            art_style: Optional project art style, prepended to style tags

        Returns:
            Validated Script
        """
        unregistered = [c.name for c in characters if not c.has_registered_identity]
        if unregistered:
            raise GenerationError(
                f"Cannot compose script: characters not registered: {', '.join(unregistered)}",
                stage="compose",
                character=unregistered[0],
            )

        script = Script(
            character_settings=self.build_character_settings(characters),
            shots=[self.compose_shot(shot, resolver, characters, scene, art_style) for shot in chunk],
        )
        logger.debug(f"[Composer] Scene {scene.id}: composed {len(script.shots)} shot(s)")
        return script

    # =========================================================================
    # Reference video prompts
    # =========================================================================

    def reference_prompt(self, character: Character) -> str:
        """캐릭터 참조 영상용 중립 프롬프트 (카메라 정면, 짧은 중립 대사)"""
        description = character.description or character.appearance
        return (
            f"Character Reference: {character.name}. Description: {description}. "
            "Action: The character faces the camera and speaks a short, neutral line, "
            "making steady eye contact with the lens. "
            "Background: Pure white background, clean even lighting. "
            "Cinematic, high quality, absolute stability."
        )

    def stylized_reference_prompt(self, character: Character) -> str:
        """정책 거부 시 1회 재시도용: 명시적으로 비실존 인물/스타일화된 캐릭터로 표현"""
        description = character.description or character.appearance
        return (
            f"Stylized character reference: {character.name}, an original illustrated character, "
            "not a real person. "
            f"Design: {description}. "
            "Rendered as a stylized, non-photorealistic animated character. "
            "Action: The character faces the viewer and says a short, neutral greeting. "
            "Background: plain white, soft even lighting. Stable framing, no camera movement."
        )
