"""
Character Resolver: 샷 텍스트에서 등장 캐릭터를 식별합니다.

- 명시적 참조(shot.characters)를 우선 수집
- 이름 부분 문자열 매칭은 긴 이름부터 검사 (짧은 이름이 긴 이름 안에서 오탐되지 않도록 매칭 구간을 마스킹)
- 대사 화자: 첫 명시 참조 → 없으면 해당 샷 텍스트에서 동일 규칙 (최소 이름 길이 2)

매칭 휴리스틱은 이 클래스 뒤에 격리되어 있어 호출부 변경 없이 교체할 수 있습니다.
"""

import re
from typing import Dict, Iterable, List, Optional
from pathlib import Path
import sys

sys.path.append(str(Path(__file__).parent.parent))

from schemas import Character, Shot
from utils.logger import get_logger

logger = get_logger("character_resolver")

_MASK = "\x00"
# 이름 앞뒤 경계: ASCII 단어 문자만 경계를 막는다 (한중일 문자는 인접 허용)
_ASCII_WORD = "A-Za-z0-9_"


def _by_longest_name(characters: Iterable[Character]) -> List[Character]:
    return sorted(
        (c for c in characters if c.name and c.name.strip()),
        key=lambda c: len(c.name.strip()),
        reverse=True,
    )


class CharacterResolver:
    """Resolves which roster characters a scene or shot involves."""

    def __init__(self, characters: Iterable[Character]):
        self.characters = list(characters)
        self._by_id: Dict[str, Character] = {c.id: c for c in self.characters}
        self._by_name: Dict[str, Character] = {c.name.strip(): c for c in self.characters if c.name}

    def lookup(self, reference: str) -> Optional[Character]:
        """Explicit reference → character (id first, then exact name, '@' prefix tolerated)."""
        if not reference:
            return None
        ref = reference.strip()
        if ref in self._by_id:
            return self._by_id[ref]
        return self._by_name.get(ref.lstrip("@"))

    def explicit_characters(self, shot: Shot) -> List[Character]:
        found = []
        for ref in shot.characters:
            char = self.lookup(ref)
            if char is None:
                logger.warning(f"[Resolver] Shot {shot.id}: unknown character reference '{ref}' ignored")
                continue
            if char not in found:
                found.append(char)
        return found

    def scan_text(self, text: str, min_name_length: int = 1) -> List[Character]:
        """
        텍스트에서 이름을 긴 것부터 찾고, 찾은 구간은 마스킹하여
        더 짧은 이름이 그 안에서 다시 매칭되지 않게 합니다.
        """
        remaining = text or ""
        found = []
        for char in _by_longest_name(self.characters):
            name = char.name.strip()
            if len(name) < min_name_length:
                continue
            if name in remaining:
                found.append(char)
                remaining = remaining.replace(name, _MASK)
        return found

    def involved_characters(self, shots: Iterable[Shot]) -> List[Character]:
        """Distinct characters appearing in a scene, in first-seen order."""
        involved: List[Character] = []
        for shot in shots:
            for char in self.explicit_characters(shot) + self.scan_text(shot.combined_text):
                if char not in involved:
                    involved.append(char)
        logger.info(f"[Resolver] Involved characters: {[c.name for c in involved]}")
        return involved

    def resolve_speaker(self, shot: Shot) -> Optional[Character]:
        """대사 화자 결정: 첫 명시 참조 우선, 없으면 샷 텍스트 스캔 (이름 길이 >= 2)"""
        explicit = self.explicit_characters(shot)
        if explicit:
            return explicit[0]
        matches = self.scan_text(shot.combined_text, min_name_length=2)
        return matches[0] if matches else None

    def replace_names(self, text: str, characters: Optional[Iterable[Character]] = None) -> str:
        """
        표시 이름을 아이덴티티 참조(@code)로 치환.

        `@이름` 과 단독 `이름` 모두 치환하며, 긴 이름부터 처리합니다.
        등록된 아이덴티티가 없는 캐릭터는 치환하지 않습니다.
        """
        result = text or ""
        pool = self.characters if characters is None else list(characters)
        for char in _by_longest_name(c for c in pool if c.has_registered_identity):
            name = re.escape(char.name.strip())
            code = char.identity.reference
            result = re.sub(rf"@{name}(?![{_ASCII_WORD}])", lambda _m: code, result)
            result = re.sub(rf"(?<![{_ASCII_WORD}@]){name}(?![{_ASCII_WORD}])", lambda _m: code, result)
        return result
