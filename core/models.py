from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Literal, Optional, TypedDict

StageKey = Literal[
    "copy-editors",
    "fact-checkers",
    "standards-ethics",
    "legal",
    "archivists",
]

AnnotationType = Literal["critical", "warning", "suggestion", "verified"]
Severity = Literal["low", "medium", "high", "critical"]

ANNOTATION_TYPES = ("critical", "warning", "suggestion", "verified")
SEVERITIES = ("low", "medium", "high", "critical")
ANNOTATION_FLAGS = ("isResolved", "isDismissed", "appliedFix")

STATUS_DRAFT = "draft"
STATUS_IDLE = "uploaded"

# summary key per annotation type
SUMMARY_KEYS: Dict[str, str] = {
    "critical": "critical",
    "warning": "warnings",
    "suggestion": "suggestions",
    "verified": "verified",
}


def reviewing_status(stage: str) -> str:
    return f"{stage}-reviewing"


def count_words(text: Optional[str]) -> int:
    """Number of whitespace-delimited tokens in ``text``."""
    return len((text or "").split())


@dataclass(frozen=True)
class StageDefinition:
    key: str
    name: str
    description: str
    directive: str

    def to_dict(self) -> Dict[str, str]:
        return {
            "key": self.key,
            "name": self.name,
            "description": self.description,
            "directive": self.directive,
        }


class Document(TypedDict, total=False):
    id: str
    ownerId: str
    title: str
    content: str
    wordCount: int
    status: str
    currentStage: Optional[str]
    stagesCompleted: List[str]
    createdAt: str
    updatedAt: str


class AnnotationDraft(TypedDict, total=False):
    type: AnnotationType
    category: str
    message: str
    suggestion: Optional[str]
    startIndex: int
    endIndex: int
    confidence: int
    severity: Severity


class Annotation(AnnotationDraft, total=False):
    id: str
    documentId: str
    stage: str
    isResolved: bool
    isDismissed: bool
    appliedFix: bool
    createdAt: str


class AnalysisSummary(TypedDict):
    critical: int
    warnings: int
    suggestions: int
    verified: int


class AnalysisOutcome(TypedDict):
    annotations: List[AnnotationDraft]
    confidence: int
    summary: AnalysisSummary
    dropped: int


class StageRunResult(TypedDict):
    stage: str
    summary: AnalysisSummary
    confidence: int
    completedStages: List[str]
    annotationCount: int
    droppedCount: int


class ClaimCheck(TypedDict, total=False):
    isVerifiable: bool
    confidence: int
    sources: List[str]
    suggestion: str


def empty_summary() -> AnalysisSummary:
    return {"critical": 0, "warnings": 0, "suggestions": 0, "verified": 0}
