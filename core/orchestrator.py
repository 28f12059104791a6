"""
Stage orchestrator: runs one editing stage against one document.

Per (document, stage) pair the run goes Idle -> Running -> Succeeded | Failed.
Only one run per pair may be in flight; a second request is rejected with
StageBusy instead of interleaving its delete-then-insert with the first.
"""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Set, Tuple

from core.annotations import AnnotationStore
from core.errors import DocumentNotFound, StageBusy
from core.models import STATUS_IDLE, StageRunResult, reviewing_status
from core.oracle import AnalysisOracle
from core.stages import StageRegistry
from core.store import DocumentStore

LOGGER = logging.getLogger(__name__)

EventEmitter = Callable[[str, str, Dict[str, Any]], None]


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class StageOrchestrator:
    """Drives stage analysis runs over injected stores, registry and oracle."""

    def __init__(
        self,
        documents: DocumentStore,
        annotations: AnnotationStore,
        registry: StageRegistry,
        oracle: AnalysisOracle,
        event_emitter: Optional[EventEmitter] = None,
    ) -> None:
        self.documents = documents
        self.annotations = annotations
        self.registry = registry
        self.oracle = oracle
        self.event_emitter = event_emitter
        self.logger = LOGGER
        self._running: Set[Tuple[str, str]] = set()
        self._running_lock = threading.Lock()

    def set_event_emitter(self, emitter: Optional[EventEmitter]) -> None:
        self.event_emitter = emitter

    def _emit_event(self, document_id: str, event_type: str, payload: Dict[str, Any]) -> None:
        if not self.event_emitter:
            return
        data = dict(payload)
        data.setdefault("timestamp", _utcnow_iso())
        try:
            self.event_emitter(document_id, event_type, data)
        except Exception:
            self.logger.exception("Failed to emit %s event for %s", event_type, document_id)

    def _claim(self, document_id: str, stage: str) -> None:
        key = (document_id, stage)
        with self._running_lock:
            if key in self._running:
                self.logger.warning("Rejected %s run for %s: already running", stage, document_id)
                raise StageBusy(document_id, stage)
            self._running.add(key)

    def _release(self, document_id: str, stage: str) -> None:
        with self._running_lock:
            self._running.discard((document_id, stage))

    def is_running(self, document_id: str, stage: str) -> bool:
        with self._running_lock:
            return (document_id, stage) in self._running

    def analyze_stage(self, document_id: str, stage_key: str) -> StageRunResult:
        """
        Run one stage for one document and replace that stage's annotations.

        Raises:
            UnknownStage: stage_key is not in the registry (nothing is changed)
            DocumentNotFound: no such document
            StageBusy: a run for the same pair is in flight (nothing is changed)
            OracleUnavailable, MalformedResponse: the analysis failed; status is
                reset to idle and the stage's annotations are left empty
        """
        stage = self.registry.lookup(stage_key)
        self.documents.require(document_id)
        self._claim(document_id, stage.key)
        try:
            return self._run(document_id, stage.key, stage.directive)
        finally:
            self._release(document_id, stage.key)

    def _run(self, document_id: str, stage_key: str, directive: str) -> StageRunResult:
        start_ts = time.time()
        document = self.documents.update(
            document_id,
            status=reviewing_status(stage_key),
            currentStage=stage_key,
        )
        self._emit_event(document_id, "stage_started", {"stage": stage_key, "status": document["status"]})

        cleared = self.annotations.delete_by_stage(document_id, stage_key)
        self.logger.info(
            "Running %s for %s (%d words, %d previous annotations cleared)",
            stage_key,
            document_id,
            document.get("wordCount", 0),
            cleared,
        )

        try:
            outcome = self.oracle.run_analysis(
                document.get("title", ""),
                document.get("content", ""),
                directive,
            )
            created = self._persist(document_id, stage_key, outcome["annotations"])
            completed = self.documents.add_completed_stage(document_id, stage_key)
            self.documents.update(document_id, status=STATUS_IDLE)
        except Exception as exc:
            self._mark_failed(document_id, stage_key, exc, start_ts)
            raise

        duration_ms = int((time.time() - start_ts) * 1000)
        self.logger.info(
            "Stage %s completed for %s: %d annotations, %d dropped, %d ms",
            stage_key,
            document_id,
            len(created),
            outcome["dropped"],
            duration_ms,
        )
        self._emit_event(
            document_id,
            "stage_completed",
            {
                "stage": stage_key,
                "summary": outcome["summary"],
                "confidence": outcome["confidence"],
                "completedStages": completed,
                "duration_ms": duration_ms,
            },
        )
        return {
            "stage": stage_key,
            "summary": outcome["summary"],
            "confidence": outcome["confidence"],
            "completedStages": completed,
            "annotationCount": len(created),
            "droppedCount": outcome["dropped"],
        }

    def _persist(self, document_id: str, stage_key: str, drafts):
        if self.documents.get(document_id) is None:
            raise DocumentNotFound(document_id)
        created = self.annotations.bulk_insert(document_id, stage_key, drafts)
        if self.documents.get(document_id) is None:
            # deleted while we were writing
            self.annotations.delete_for_document(document_id)
            raise DocumentNotFound(document_id)
        return created

    def _mark_failed(self, document_id: str, stage_key: str, exc: Exception, start_ts: float) -> None:
        self.logger.error("Stage %s failed for %s: %s", stage_key, document_id, exc)
        # a failed run never leaves partial results behind
        self.annotations.delete_by_stage(document_id, stage_key)
        try:
            # currentStage is left pointing at the failed stage
            self.documents.update(document_id, status=STATUS_IDLE)
        except DocumentNotFound:
            self.logger.warning("Document %s disappeared during %s run", document_id, stage_key)
        self._emit_event(
            document_id,
            "stage_failed",
            {
                "stage": stage_key,
                "error": str(exc),
                "error_type": type(exc).__name__,
                "duration_ms": int((time.time() - start_ts) * 1000),
            },
        )
