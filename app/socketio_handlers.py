"""Socket.IO event handlers."""

import logging

from flask import request
from flask_socketio import emit, join_room, leave_room

from app.auth import current_owner
from core.errors import ReviewError

logger = logging.getLogger(__name__)


def review_room(document_id: str) -> str:
    return f"review:{document_id}"


def register_socketio_handlers(socketio, service=None):
    """Register Socket.IO event handlers; room joins are owner-checked through ``service``."""

    @socketio.on('connect')
    def handle_connect():
        """Handle client connection."""
        logger.info("Client connected: %s", request.sid)
        emit('connected', {'status': 'ok'})

    @socketio.on('review:join')
    def handle_join(data):
        """Join a document's review room."""
        document_id = (data or {}).get('documentId')
        if not document_id:
            return
        if service is not None:
            try:
                service.get_document(document_id, owner_id=current_owner())
            except ReviewError as exc:
                logger.warning("Refused room join for %s: %s", document_id, exc)
                emit('review:error', {'documentId': document_id, 'error': str(exc), 'type': type(exc).__name__})
                return
        join_room(review_room(document_id))
        emit('joined', {'documentId': document_id})

    @socketio.on('review:leave')
    def handle_leave(data):
        document_id = (data or {}).get('documentId')
        if document_id:
            leave_room(review_room(document_id))
            emit('left', {'documentId': document_id})

    @socketio.on('disconnect')
    def handle_disconnect():
        """Handle client disconnection."""
        logger.info("Client disconnected: %s", request.sid)


def make_review_emitter(socketio):
    """Orchestrator event emitter that forwards to the document's room."""
    def emitter(document_id: str, event_type: str, data: dict) -> None:
        payload = dict(data)
        payload['documentId'] = document_id
        socketio.emit(f'review:{event_type}', payload, room=review_room(document_id))
    return emitter
