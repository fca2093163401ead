"""
출력 해상도 정책

화면비 → 고정 해상도 두 가지 (landscape / portrait).
참조 영상 합성과 최종 샷 생성 모두 이 정책을 사용합니다.
"""

from typing import Iterable, Optional

from schemas import GenerationSettings


class ResolutionPolicy:
    """Maps an aspect-ratio class to one of exactly two output resolutions."""

    def __init__(
        self,
        landscape: str = "1280x720",
        portrait: str = "720x1280",
        portrait_ratios: Iterable[str] = ("9:16", "3:4"),
    ):
        self.landscape = landscape
        self.portrait = portrait
        self.portrait_ratios = {self._normalize(r) for r in portrait_ratios}

    @classmethod
    def from_settings(cls, settings: GenerationSettings) -> "ResolutionPolicy":
        return cls(
            landscape=settings.landscape_resolution,
            portrait=settings.portrait_resolution,
            portrait_ratios=settings.portrait_ratios,
        )

    @staticmethod
    def _normalize(aspect_ratio: Optional[str]) -> str:
        return (aspect_ratio or "").replace(" ", "").replace("/", ":")

    def is_portrait(self, aspect_ratio: Optional[str]) -> bool:
        return self._normalize(aspect_ratio) in self.portrait_ratios

    def resolve(self, aspect_ratio: Optional[str]) -> str:
        """Portrait ratios → portrait resolution, everything else → landscape."""
        return self.portrait if self.is_portrait(aspect_ratio) else self.landscape

    def resolve_dimensions(self, width: int, height: int) -> str:
        """Image dimensions → resolution (ratio >= 1 is landscape)."""
        if not width or not height:
            return self.landscape
        return self.landscape if width / height >= 1 else self.portrait
