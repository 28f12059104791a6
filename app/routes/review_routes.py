from __future__ import annotations

import logging
from functools import wraps
from typing import Any, Dict, Optional

from flask import Blueprint, g, jsonify, request
from werkzeug.utils import secure_filename

from app.auth import owner_required
from app.socketio_handlers import review_room
from core.errors import ReviewError
from core.review import USER_EDITABLE_FIELDS, ReviewService

logger = logging.getLogger(__name__)

# Blueprint for editorial review routes
review_bp = Blueprint('review', __name__)

# Module-level managers (initialized in init_review_routes)
_service: Optional[ReviewService] = None
_socketio = None


def init_review_routes(service: ReviewService, socketio_instance=None):
    """Initialize review routes with dependencies."""
    global _service, _socketio
    _service = service
    _socketio = socketio_instance
    logger.info("Review routes initialized")


def _api_errors(f):
    """Map core errors to JSON responses with their HTTP status."""
    @wraps(f)
    def wrapper(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except ReviewError as exc:
            logger.warning("%s %s failed: %s", request.method, request.path, exc)
            return jsonify({"error": str(exc), "type": type(exc).__name__}), exc.http_status
        except ValueError as exc:
            return jsonify({"error": str(exc)}), 400
        except Exception as exc:  # pylint: disable=broad-except
            logger.exception("%s %s failed", request.method, request.path)
            return jsonify({"error": str(exc)}), 500
    return wrapper


def _json_body() -> Dict[str, Any]:
    payload = request.get_json(force=True, silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValueError("Request body must be a JSON object")
    return payload


def _emit(document_id: str, event_type: str, data: Dict[str, Any]) -> None:
    if not _socketio:
        return
    try:
        _socketio.emit(f"review:{event_type}", data, room=review_room(document_id))
    except Exception:
        logger.exception("Failed to emit %s event for %s", event_type, document_id)


@review_bp.route("/api/health", methods=["GET"])
def health():
    return jsonify({"status": "ok"})


@review_bp.route("/api/editing-stages", methods=["GET"])
@_api_errors
def editing_stages():
    return jsonify({"stages": _service.list_stages()})


# ===================================================================
# DOCUMENT ROUTES
# ===================================================================

@review_bp.route("/api/documents", methods=["GET", "POST"])
@owner_required
@_api_errors
def documents():
    if request.method == "GET":
        return jsonify({"documents": _service.list_documents(g.owner_id)})

    payload = _json_body()
    document = _service.create_document(
        g.owner_id,
        payload.get("title", ""),
        payload.get("content", ""),
        status=payload.get("status") or "draft",
    )
    return jsonify({"document": document}), 201


@review_bp.route("/api/documents/<document_id>", methods=["GET", "PUT", "DELETE"])
@owner_required
@_api_errors
def document_detail(document_id: str):
    if request.method == "DELETE":
        _service.delete_document(document_id, owner_id=g.owner_id)
        logger.info("Document deleted: %s", document_id)
        return jsonify({"success": True})

    if request.method == "PUT":
        payload = _json_body()
        fields = {k: payload[k] for k in USER_EDITABLE_FIELDS if k in payload}
        document = _service.update_document(document_id, owner_id=g.owner_id, **fields)
        return jsonify({"document": document})

    return jsonify({"document": _service.get_document(document_id, owner_id=g.owner_id)})


@review_bp.route("/api/upload", methods=["POST"])
@owner_required
@_api_errors
def upload_document():
    if "file" not in request.files:
        return jsonify({"error": "file field is required"}), 400

    uploaded = request.files["file"]
    filename = secure_filename(uploaded.filename or "")
    if not filename:
        return jsonify({"error": "Selected file has no name"}), 400

    document = _service.upload_document(g.owner_id, filename, uploaded.read())
    return jsonify({"document": document}), 201


# ===================================================================
# ANALYSIS ROUTES
# ===================================================================

@review_bp.route("/api/documents/<document_id>/analyze/<stage>", methods=["POST"])
@owner_required
@_api_errors
def analyze_stage(document_id: str, stage: str):
    """Run one editing stage and replace that stage's annotations."""
    result = _service.analyze_stage(document_id, stage, owner_id=g.owner_id)
    return jsonify(result)


@review_bp.route("/api/documents/<document_id>/analyze", methods=["POST"])
@owner_required
@_api_errors
def analyze_document(document_id: str):
    """Default analysis (copy-edit stage)."""
    result = _service.analyze_default(document_id, owner_id=g.owner_id)
    return jsonify(result)


@review_bp.route("/api/documents/<document_id>/analysis", methods=["GET"])
@owner_required
@_api_errors
def list_annotations(document_id: str):
    stage = request.args.get("stage") or None
    annotations = _service.query_annotations(document_id, stage, owner_id=g.owner_id)
    return jsonify({"annotations": annotations})


def _set_flags(annotation_id: str, flags: Dict[str, Any]):
    annotation = _service.mutate_annotation(annotation_id, flags, owner_id=g.owner_id)
    _emit(annotation["documentId"], "annotation_updated", annotation)
    return jsonify({"annotation": annotation})


@review_bp.route("/api/analysis/<annotation_id>", methods=["PATCH"])
@owner_required
@_api_errors
def update_annotation(annotation_id: str):
    """Set any of isResolved / isDismissed / appliedFix."""
    return _set_flags(annotation_id, _json_body())


@review_bp.route("/api/analysis/<annotation_id>/resolve", methods=["PUT"])
@owner_required
@_api_errors
def resolve_annotation(annotation_id: str):
    return _set_flags(annotation_id, {"isResolved": True})


@review_bp.route("/api/analysis/<annotation_id>/dismiss", methods=["PUT"])
@owner_required
@_api_errors
def dismiss_annotation(annotation_id: str):
    return _set_flags(annotation_id, {"isDismissed": True})


@review_bp.route("/api/analysis/<annotation_id>/apply-fix", methods=["PUT"])
@owner_required
@_api_errors
def apply_annotation_fix(annotation_id: str):
    return _set_flags(annotation_id, {"appliedFix": True})


@review_bp.route("/api/fact-check", methods=["POST"])
@owner_required
@_api_errors
def fact_check():
    payload = _json_body()
    result = _service.check_claim(payload.get("claim", ""), payload.get("context", ""))
    return jsonify(result)
