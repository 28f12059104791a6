"""
Catalog of the five editorial review stages.
Each stage pairs display metadata with the directive sent to the analysis service.
"""

import logging
from pathlib import Path
from typing import Dict, Iterable, Optional, Tuple

from core.errors import UnknownStage
from core.models import StageDefinition

logger = logging.getLogger(__name__)

PROMPTS_DIR = Path(__file__).parent / "prompts"

# key, display name, description; directive text lives in prompts/<key>.md
STAGE_CATALOG: Tuple[Tuple[str, str, str], ...] = (
    (
        "copy-editors",
        "Copy Editors",
        "Style & Grammar - mechanical accuracy, stylistic consistency and readability",
    ),
    (
        "fact-checkers",
        "Fact Checkers",
        "Fact & Source Verification - accuracy and proper sourcing",
    ),
    (
        "standards-ethics",
        "Standards & Ethics",
        "Bias & Sensitivity - neutrality, fairness and inclusivity",
    ),
    (
        "legal",
        "Legal Department",
        "Legal & Compliance - publication risk before it goes out",
    ),
    (
        "archivists",
        "Archivists",
        "Historical Consistency - continuity and accuracy over time",
    ),
)


def _load_directive(prompts_dir: Path, key: str) -> str:
    prompt_path = prompts_dir / f"{key}.md"
    if not prompt_path.exists():
        raise FileNotFoundError(f"Stage directive not found: {prompt_path}")
    return prompt_path.read_text(encoding="utf-8").strip()


class StageRegistry:
    """Read-only lookup table of stage definitions, in review order."""

    def __init__(self, stages: Optional[Iterable[StageDefinition]] = None):
        if stages is None:
            stages = load_default_stages()
        self._stages: Tuple[StageDefinition, ...] = tuple(stages)
        self._by_key: Dict[str, StageDefinition] = {s.key: s for s in self._stages}
        if len(self._by_key) != len(self._stages):
            raise ValueError("Duplicate stage keys in registry")

    def lookup(self, key: str) -> StageDefinition:
        stage = self._by_key.get(key)
        if stage is None:
            raise UnknownStage(key)
        return stage

    def list(self) -> Tuple[StageDefinition, ...]:
        return self._stages

    def keys(self) -> Tuple[str, ...]:
        return tuple(s.key for s in self._stages)

    def __contains__(self, key: object) -> bool:
        return key in self._by_key

    def __len__(self) -> int:
        return len(self._stages)


def load_default_stages(prompts_dir: Path = PROMPTS_DIR) -> Tuple[StageDefinition, ...]:
    """Build the stage table from STAGE_CATALOG and the directive files."""
    stages = tuple(
        StageDefinition(
            key=key,
            name=name,
            description=description,
            directive=_load_directive(prompts_dir, key),
        )
        for key, name, description in STAGE_CATALOG
    )
    logger.info("Loaded %d editing stages from %s", len(stages), prompts_dir)
    return stages
