"""
Annotation storage for stage analysis results.
Findings are grouped per document; an id index resolves flag mutations that
arrive with only the annotation id.
"""
from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional
from uuid import uuid4

from core.errors import AnnotationNotFound
from core.models import ANNOTATION_FLAGS, Annotation, AnnotationDraft
from tools.file_utils import ensure_directory, is_safe_id, read_json_file, write_json_file

logger = logging.getLogger(__name__)


def _timestamp() -> str:
    return datetime.utcnow().isoformat(timespec="microseconds") + "Z"


def _validate_flags(flags: Dict[str, object]) -> Dict[str, bool]:
    if not flags:
        raise ValueError(f"At least one of {', '.join(ANNOTATION_FLAGS)} is required")
    unknown = sorted(set(flags) - set(ANNOTATION_FLAGS))
    if unknown:
        raise ValueError(f"Unknown annotation flags: {', '.join(unknown)}")
    for name, value in flags.items():
        if not isinstance(value, bool):
            raise ValueError(f"Flag '{name}' must be a boolean")
    return dict(flags)  # type: ignore[arg-type]


class AnnotationStore(ABC):
    """Annotation persistence; subclasses supply the storage primitives."""

    def __init__(self):
        self._lock = threading.RLock()

    # ------------------------------------------------------------------ #
    # Storage primitives
    # ------------------------------------------------------------------ #
    @abstractmethod
    def _read(self, document_id: str) -> List[Annotation]:
        """Annotations of one document in insertion order."""

    @abstractmethod
    def _write(self, document_id: str, annotations: List[Annotation]) -> None:
        """Replace the stored annotations of one document."""

    @abstractmethod
    def _load_index(self) -> Dict[str, str]:
        """Mapping of annotation id to document id."""

    @abstractmethod
    def _save_index(self, index: Dict[str, str]) -> None:
        pass

    # ------------------------------------------------------------------ #
    # Operations
    # ------------------------------------------------------------------ #
    def bulk_insert(
        self,
        document_id: str,
        stage: str,
        drafts: Iterable[AnnotationDraft],
    ) -> List[Annotation]:
        """Append one run's findings for (document, stage) in a single write."""
        created_at = _timestamp()
        new_items: List[Annotation] = []
        for draft in drafts:
            annotation: Annotation = {
                "id": uuid4().hex,
                "documentId": document_id,
                "stage": stage,
                "type": draft["type"],
                "category": draft["category"],
                "message": draft["message"],
                "suggestion": draft.get("suggestion"),
                "startIndex": draft["startIndex"],
                "endIndex": draft["endIndex"],
                "confidence": draft["confidence"],
                "severity": draft["severity"],
                "isResolved": False,
                "isDismissed": False,
                "appliedFix": False,
                "createdAt": created_at,
            }
            new_items.append(annotation)

        if not new_items:
            return []

        with self._lock:
            existing = self._read(document_id)
            self._write(document_id, existing + new_items)
            index = self._load_index()
            for item in new_items:
                index[item["id"]] = document_id
            self._save_index(index)

        logger.info("Stored %d annotations for %s/%s", len(new_items), document_id, stage)
        return [dict(a) for a in new_items]  # type: ignore[misc]

    def delete_by_stage(self, document_id: str, stage: str) -> int:
        with self._lock:
            existing = self._read(document_id)
            kept = [a for a in existing if a.get("stage") != stage]
            removed = [a["id"] for a in existing if a.get("stage") == stage]
            if removed:
                self._write(document_id, kept)
                self._forget(removed)
        if removed:
            logger.info("Deleted %d %s annotations for %s", len(removed), stage, document_id)
        return len(removed)

    def delete_for_document(self, document_id: str) -> int:
        with self._lock:
            existing = self._read(document_id)
            if existing:
                self._write(document_id, [])
                self._forget([a["id"] for a in existing])
        return len(existing)

    def query(self, document_id: str, stage: Optional[str] = None) -> List[Annotation]:
        """Annotations ordered by startIndex; ties keep insertion order."""
        with self._lock:
            items = self._read(document_id)
        if stage is not None:
            items = [a for a in items if a.get("stage") == stage]
        return sorted((dict(a) for a in items), key=lambda a: a["startIndex"])  # type: ignore[return-value]

    def get(self, annotation_id: str) -> Annotation:
        with self._lock:
            document_id = self._load_index().get(annotation_id)
            if document_id is not None:
                for annotation in self._read(document_id):
                    if annotation["id"] == annotation_id:
                        return dict(annotation)  # type: ignore[return-value]
        raise AnnotationNotFound(annotation_id)

    def mutate(self, annotation_id: str, flags: Dict[str, bool]) -> Annotation:
        """Set review flags on one annotation; position and classification stay as they are."""
        updates = _validate_flags(flags)
        with self._lock:
            document_id = self._load_index().get(annotation_id)
            if document_id is None:
                raise AnnotationNotFound(annotation_id)
            annotations = self._read(document_id)
            for annotation in annotations:
                if annotation["id"] == annotation_id:
                    annotation.update(updates)  # type: ignore[typeddict-item]
                    self._write(document_id, annotations)
                    return dict(annotation)  # type: ignore[return-value]
        raise AnnotationNotFound(annotation_id)

    def _forget(self, annotation_ids: List[str]) -> None:
        index = self._load_index()
        for annotation_id in annotation_ids:
            index.pop(annotation_id, None)
        self._save_index(index)


class MemoryAnnotationStore(AnnotationStore):
    """Process-local annotation store."""

    def __init__(self):
        super().__init__()
        self._by_document: Dict[str, List[Annotation]] = {}
        self._index: Dict[str, str] = {}

    def _read(self, document_id: str) -> List[Annotation]:
        return [dict(a) for a in self._by_document.get(document_id, [])]  # type: ignore[misc]

    def _write(self, document_id: str, annotations: List[Annotation]) -> None:
        if annotations:
            self._by_document[document_id] = [dict(a) for a in annotations]  # type: ignore[misc]
        else:
            self._by_document.pop(document_id, None)

    def _load_index(self) -> Dict[str, str]:
        return self._index

    def _save_index(self, index: Dict[str, str]) -> None:
        self._index = index


class JsonAnnotationStore(AnnotationStore):
    """File-based JSON annotation store: one file per document plus index.json."""

    def __init__(self, data_dir: str = "data/annotations"):
        super().__init__()
        self.data_dir = ensure_directory(Path(data_dir))
        self.index_file = self.data_dir / "index.json"
        if not self.index_file.exists():
            write_json_file(self.index_file, {"annotations": {}})

    def _doc_file(self, document_id: str) -> Path:
        return self.data_dir / f"{document_id}.json"

    def _read(self, document_id: str) -> List[Annotation]:
        if not is_safe_id(document_id) or document_id == "index":
            return []
        data = read_json_file(self._doc_file(document_id), default={"annotations": []})
        return data.get("annotations", [])

    def _write(self, document_id: str, annotations: List[Annotation]) -> None:
        path = self._doc_file(document_id)
        if annotations:
            write_json_file(path, {"document_id": document_id, "annotations": annotations})
        elif path.exists():
            path.unlink()

    def _load_index(self) -> Dict[str, str]:
        return read_json_file(self.index_file, default={"annotations": {}}).get("annotations", {})

    def _save_index(self, index: Dict[str, str]) -> None:
        write_json_file(self.index_file, {"annotations": index})
