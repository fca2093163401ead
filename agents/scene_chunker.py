"""
Scene Chunker: 씬의 샷 목록을 백엔드 길이 제한 내의 생성 작업 단위로 분할합니다.

- Greedy, 단일 패스, 순서 보존
- CAP = 플랫폼 최대 길이 - 안전 버퍼 (요청 길이에 여유분이 추가되기 때문)
- CAP 보다 긴 단일 샷은 단독 청크 (버리지 않음)
"""

import math
from typing import List, Sequence
from pathlib import Path
import sys

sys.path.append(str(Path(__file__).parent.parent))

from schemas import GenerationSettings, Shot, ShotRange
from utils.logger import get_logger

logger = get_logger("scene_chunker")


class SceneChunker:
    """Greedy, order-preserving bin packing of shots into duration-capped chunks."""

    def __init__(self, settings: GenerationSettings = None):
        self.settings = settings or GenerationSettings()

    @property
    def cap(self) -> float:
        return self.settings.chunk_cap_seconds

    def split(self, shots: Sequence[Shot]) -> List[List[Shot]]:
        """
        Split ordered shots into chunks whose summed duration stays within CAP.

        Args:
            shots: Shots already sorted by ``order``

        Returns:
            Ordered list of shot chunks (one generation task per chunk)
        """
        chunks: List[List[Shot]] = []
        current: List[Shot] = []
        current_sum = 0.0

        for shot in shots:
            duration = shot.duration
            if current_sum + duration > self.cap and current:
                chunks.append(current)
                current = [shot]
                current_sum = duration
            else:
                current.append(shot)
                current_sum += duration

        if current:
            chunks.append(current)

        for idx, chunk in enumerate(chunks, 1):
            total = sum(s.duration for s in chunk)
            if total > self.cap:
                logger.warning(
                    f"[Chunker] Chunk {idx} holds a single {total:.1f}s shot exceeding CAP {self.cap}s"
                )
        logger.info(f"[Chunker] {len(shots)} shot(s) → {len(chunks)} chunk(s) (CAP {self.cap}s)")
        return chunks

    def duration_tier(self, chunk: Sequence[Shot]) -> int:
        """
        비용/품질 정책: 기본은 긴 tier.
        샷이 1개 이하이고 (합계 + 버퍼)가 짧은 tier 이내일 때만 짧은 tier 사용.
        """
        raw = sum(s.duration for s in chunk)
        padded = math.ceil(raw + self.settings.safety_buffer_seconds)
        if len(chunk) <= 1 and padded <= self.settings.short_tier_seconds:
            return self.settings.short_tier_seconds
        return self.settings.long_tier_seconds


def compute_shot_ranges(chunk: Sequence[Shot]) -> List[ShotRange]:
    """Walk the chunk in order: shot i spans [cumulative_start, cumulative_start + duration_i)."""
    ranges = []
    cursor = 0.0
    for shot in chunk:
        end = cursor + shot.duration
        ranges.append(ShotRange(shot_id=shot.id, start=cursor, end=end))
        cursor = end
    return ranges
