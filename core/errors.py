"""Error taxonomy for stage analysis runs and the annotation API."""


class ReviewError(RuntimeError):
    """Base class for errors surfaced to callers of the review core."""

    http_status = 500


class UnknownStage(ReviewError):
    http_status = 400

    def __init__(self, stage: str):
        super().__init__(f"Unknown editing stage: {stage}")
        self.stage = stage


class DocumentNotFound(ReviewError):
    http_status = 404

    def __init__(self, document_id: str):
        super().__init__(f"Document not found: {document_id}")
        self.document_id = document_id


class AnnotationNotFound(ReviewError):
    http_status = 404

    def __init__(self, annotation_id: str):
        super().__init__(f"Annotation not found: {annotation_id}")
        self.annotation_id = annotation_id


class StageBusy(ReviewError):
    """Another run for the same (document, stage) pair is in flight."""

    http_status = 409

    def __init__(self, document_id: str, stage: str):
        super().__init__(f"Stage '{stage}' is already running for document {document_id}")
        self.document_id = document_id
        self.stage = stage


class OracleUnavailable(ReviewError):
    """The analysis service errored, timed out, or is not configured."""

    http_status = 503


class MalformedResponse(ReviewError):
    """The analysis service replied with something that is not a findings object."""

    http_status = 502


class DroppedInvalidAnnotation(ValueError):
    """A single finding failed validation; the rest of the batch is kept."""

    def __init__(self, reason: str, index: int = -1):
        super().__init__(reason)
        self.reason = reason
        self.index = index


class AccessDenied(ReviewError):
    """The document belongs to another owner."""

    http_status = 403

    def __init__(self, document_id: str):
        super().__init__(f"Access denied to document {document_id}")
        self.document_id = document_id
