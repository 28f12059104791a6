"""
Review service: the operations the web layer calls.
Wraps the document store, annotation store, stage registry and orchestrator,
and applies the owner check to every document-scoped call.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from core.annotations import AnnotationStore
from core.errors import AccessDenied
from core.models import STATUS_DRAFT, Annotation, ClaimCheck, Document, StageRunResult
from core.orchestrator import StageOrchestrator
from core.store import DocumentStore
from tools.file_utils import title_from_filename

logger = logging.getLogger(__name__)

# fields a user can edit; lifecycle fields are driven by the orchestrator
USER_EDITABLE_FIELDS = ("title", "content", "status")

LEGACY_STAGE = "copy-editors"


class ReviewService:
    """Application-facing API for documents, stage runs and annotations."""

    def __init__(
        self,
        documents: DocumentStore,
        annotations: AnnotationStore,
        orchestrator: StageOrchestrator,
    ):
        self.documents = documents
        self.annotations = annotations
        self.orchestrator = orchestrator
        self.registry = orchestrator.registry
        self.oracle = orchestrator.oracle

    def _owned(self, document_id: str, owner_id: Optional[str]) -> Document:
        document = self.documents.require(document_id)
        if owner_id is not None and document.get("ownerId") != owner_id:
            raise AccessDenied(document_id)
        return document

    # ------------------------------------------------------------------ #
    # Stages
    # ------------------------------------------------------------------ #
    def list_stages(self) -> List[Dict[str, str]]:
        return [stage.to_dict() for stage in self.registry.list()]

    # ------------------------------------------------------------------ #
    # Documents
    # ------------------------------------------------------------------ #
    def create_document(self, owner_id: str, title: str, content: str, status: str = STATUS_DRAFT) -> Document:
        if not isinstance(title, str) or not title.strip():
            raise ValueError("title is required")
        if not isinstance(content, str):
            raise ValueError("content must be a string")
        return self.documents.create(owner_id, title.strip(), content, status=status)

    def upload_document(self, owner_id: str, filename: str, raw: bytes) -> Document:
        """Create a draft from an uploaded plain-text file; title is the file name stem."""
        try:
            content = raw.decode("utf-8-sig")
        except UnicodeDecodeError as exc:
            raise ValueError("Uploaded file must be UTF-8 text") from exc
        return self.documents.create(owner_id, title_from_filename(filename), content, status=STATUS_DRAFT)

    def get_document(self, document_id: str, owner_id: Optional[str] = None) -> Document:
        return self._owned(document_id, owner_id)

    def list_documents(self, owner_id: str) -> List[Document]:
        return self.documents.list_for_owner(owner_id)

    def update_document(self, document_id: str, owner_id: Optional[str] = None, **fields: Any) -> Document:
        """
        Apply a user edit.

        Existing annotation offsets are not shifted when content changes; they keep
        pointing into the text as it was when the stage ran.
        """
        self._owned(document_id, owner_id)
        unknown = sorted(set(fields) - set(USER_EDITABLE_FIELDS))
        if unknown:
            raise ValueError(f"Fields cannot be updated: {', '.join(unknown)}")
        for name, value in fields.items():
            if not isinstance(value, str):
                raise ValueError(f"{name} must be a string")
        if not fields:
            return self.documents.require(document_id)
        return self.documents.update(document_id, **fields)

    def delete_document(self, document_id: str, owner_id: Optional[str] = None) -> bool:
        self._owned(document_id, owner_id)
        return self.documents.delete(document_id)

    # ------------------------------------------------------------------ #
    # Analysis
    # ------------------------------------------------------------------ #
    def analyze_stage(self, document_id: str, stage_key: str, owner_id: Optional[str] = None) -> StageRunResult:
        self.registry.lookup(stage_key)
        self._owned(document_id, owner_id)
        return self.orchestrator.analyze_stage(document_id, stage_key)

    def analyze_default(self, document_id: str, owner_id: Optional[str] = None) -> StageRunResult:
        """Run the copy-edit stage; kept for clients that predate per-stage analysis."""
        return self.analyze_stage(document_id, LEGACY_STAGE, owner_id=owner_id)

    def query_annotations(
        self,
        document_id: str,
        stage: Optional[str] = None,
        owner_id: Optional[str] = None,
    ) -> List[Annotation]:
        if stage is not None:
            self.registry.lookup(stage)
        self._owned(document_id, owner_id)
        return self.annotations.query(document_id, stage)

    def mutate_annotation(
        self,
        annotation_id: str,
        flags: Dict[str, Any],
        owner_id: Optional[str] = None,
    ) -> Annotation:
        annotation = self.annotations.get(annotation_id)
        self._owned(annotation["documentId"], owner_id)
        updated = self.annotations.mutate(annotation_id, flags)
        logger.info("Annotation %s flags set: %s", annotation_id, flags)
        return updated

    def check_claim(self, claim: str, context: str = "") -> ClaimCheck:
        if not isinstance(claim, str) or not claim.strip():
            raise ValueError("claim is required")
        return self.oracle.check_claim(claim.strip(), context or "")
