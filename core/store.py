"""Document lifecycle storage: text, word count, review status and completed stages."""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional
from uuid import uuid4

from core.annotations import AnnotationStore
from core.errors import DocumentNotFound
from core.models import STATUS_DRAFT, Document, count_words
from tools.file_utils import ensure_directory, is_safe_id, read_json_file, write_json_file

logger = logging.getLogger(__name__)

# fields a caller may change through update(); stage completion has its own method
EDITABLE_FIELDS = ("title", "content", "status", "currentStage")


class DocumentStore(ABC):
    """Document persistence; deleting a document also deletes its annotations."""

    def __init__(self, annotations: Optional[AnnotationStore] = None):
        self.annotations = annotations
        self._lock = threading.RLock()
        self._last_ts: Optional[datetime] = None

    @abstractmethod
    def _read(self, document_id: str) -> Optional[Document]:
        pass

    @abstractmethod
    def _write(self, document: Document) -> None:
        pass

    @abstractmethod
    def _remove(self, document_id: str) -> bool:
        pass

    @abstractmethod
    def _all(self) -> Iterable[Document]:
        pass

    def _timestamp(self) -> str:
        # strictly increasing so most-recently-updated ordering has no ties
        now = datetime.utcnow()
        if self._last_ts is not None and now <= self._last_ts:
            now = self._last_ts + timedelta(microseconds=1)
        self._last_ts = now
        return now.isoformat(timespec="microseconds") + "Z"

    def create(
        self,
        owner_id: str,
        title: str,
        content: str,
        status: str = STATUS_DRAFT,
    ) -> Document:
        with self._lock:
            now = self._timestamp()
            document: Document = {
                "id": uuid4().hex,
                "ownerId": owner_id,
                "title": title,
                "content": content,
                "wordCount": count_words(content),
                "status": status,
                "currentStage": None,
                "stagesCompleted": [],
                "createdAt": now,
                "updatedAt": now,
            }
            self._write(document)
        logger.info("Created document %s for %s", document["id"], owner_id)
        return dict(document)  # type: ignore[return-value]

    def get(self, document_id: str) -> Optional[Document]:
        with self._lock:
            document = self._read(document_id)
        return dict(document) if document else None  # type: ignore[return-value]

    def require(self, document_id: str) -> Document:
        document = self.get(document_id)
        if document is None:
            raise DocumentNotFound(document_id)
        return document

    def update(self, document_id: str, **fields: Any) -> Document:
        """Partial update; wordCount follows content whenever content is written."""
        unknown = sorted(set(fields) - set(EDITABLE_FIELDS))
        if unknown:
            raise ValueError(f"Fields cannot be updated: {', '.join(unknown)}")

        with self._lock:
            document = self._read(document_id)
            if document is None:
                raise DocumentNotFound(document_id)
            document.update(fields)  # type: ignore[typeddict-item]
            if "content" in fields:
                document["wordCount"] = count_words(fields["content"])
            document["updatedAt"] = self._timestamp()
            self._write(document)
        return dict(document)  # type: ignore[return-value]

    def add_completed_stage(self, document_id: str, stage: str) -> List[str]:
        """Append ``stage`` to stagesCompleted if absent; returns the updated set."""
        with self._lock:
            document = self._read(document_id)
            if document is None:
                raise DocumentNotFound(document_id)
            completed = list(document.get("stagesCompleted") or [])
            if stage not in completed:
                completed.append(stage)
                document["stagesCompleted"] = completed
                document["updatedAt"] = self._timestamp()
                self._write(document)
        return completed

    def delete(self, document_id: str) -> bool:
        with self._lock:
            deleted = self._remove(document_id)
        if deleted and self.annotations is not None:
            removed = self.annotations.delete_for_document(document_id)
            logger.info("Deleted document %s and %d annotations", document_id, removed)
        return deleted

    def list_for_owner(self, owner_id: str) -> List[Document]:
        with self._lock:
            documents = [dict(d) for d in self._all() if d.get("ownerId") == owner_id]
        return sorted(documents, key=lambda d: d.get("updatedAt", ""), reverse=True)  # type: ignore[return-value]


class MemoryDocumentStore(DocumentStore):
    """Process-local document store."""

    def __init__(self, annotations: Optional[AnnotationStore] = None):
        super().__init__(annotations)
        self._documents: Dict[str, Document] = {}

    def _read(self, document_id: str) -> Optional[Document]:
        document = self._documents.get(document_id)
        if document is None:
            return None
        copy = dict(document)
        copy["stagesCompleted"] = list(document.get("stagesCompleted") or [])
        return copy  # type: ignore[return-value]

    def _write(self, document: Document) -> None:
        stored = dict(document)
        stored["stagesCompleted"] = list(document.get("stagesCompleted") or [])
        self._documents[document["id"]] = stored  # type: ignore[assignment]

    def _remove(self, document_id: str) -> bool:
        return self._documents.pop(document_id, None) is not None

    def _all(self) -> Iterable[Document]:
        return list(self._documents.values())


class JsonDocumentStore(DocumentStore):
    """File-based JSON storage: one file per document plus index.json."""

    def __init__(self, data_dir: str = "data/documents", annotations: Optional[AnnotationStore] = None):
        super().__init__(annotations)
        self.data_dir = ensure_directory(Path(data_dir))
        self.index_file = self.data_dir / "index.json"
        self._ensure_index()

    def _ensure_index(self):
        """Ensure index.json exists."""
        if not self.index_file.exists():
            write_json_file(self.index_file, {"documents": []})

    def _doc_file(self, document_id: str) -> Path:
        return self.data_dir / f"{document_id}.json"

    def _update_index(self, document: Optional[Document], remove_id: Optional[str] = None):
        index = read_json_file(self.index_file, default={"documents": []})
        drop_id = remove_id or (document or {}).get("id")
        docs = [d for d in index["documents"] if d["id"] != drop_id]
        if document is not None:
            docs.append({
                "id": document["id"],
                "ownerId": document.get("ownerId"),
                "title": document.get("title", "Untitled"),
                "status": document.get("status", "unknown"),
                "updatedAt": document.get("updatedAt"),
            })
        index["documents"] = sorted(docs, key=lambda x: x.get("updatedAt") or "", reverse=True)
        write_json_file(self.index_file, index)

    def _read(self, document_id: str) -> Optional[Document]:
        if not is_safe_id(document_id) or document_id == "index":
            return None
        return read_json_file(self._doc_file(document_id))

    def _write(self, document: Document) -> None:
        write_json_file(self._doc_file(document["id"]), document)
        self._update_index(document)

    def _remove(self, document_id: str) -> bool:
        path = self._doc_file(document_id)
        if not is_safe_id(document_id) or document_id == "index" or not path.exists():
            return False
        path.unlink()
        self._update_index(None, remove_id=document_id)
        return True

    def _all(self) -> Iterable[Document]:
        index = read_json_file(self.index_file, default={"documents": []})
        for entry in index["documents"]:
            try:
                document = self._read(entry["id"])
            except ValueError as exc:
                logger.error("Failed to read document %s: %s", entry["id"], exc)
                continue
            if document is not None:
                yield document
