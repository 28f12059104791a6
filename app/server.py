"""Main Flask application server."""

import logging
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, Optional

from flask import Flask
from flask_cors import CORS
from flask_socketio import SocketIO

from app.config import load_config
from app.routes.review_routes import init_review_routes, review_bp
from app.socketio_handlers import make_review_emitter, register_socketio_handlers
from core.annotations import JsonAnnotationStore, MemoryAnnotationStore
from core.oracle import AnalysisOracle
from core.orchestrator import StageOrchestrator
from core.review import ReviewService
from core.stages import StageRegistry
from core.store import JsonDocumentStore, MemoryDocumentStore
from tools.llm_client import LLMClientWrapper, build_llm_client, is_llm_available

logger = logging.getLogger(__name__)

app = None
socketio = None


def _build_llm_client(config: Dict[str, Any]) -> Optional[LLMClientWrapper]:
    api_key = config.get('ANTHROPIC_API_KEY')
    if not is_llm_available(api_key):
        logger.warning("ANTHROPIC_API_KEY not set; stage analysis will report the oracle as unavailable")
        return None
    return build_llm_client(
        api_key=api_key,
        model=config['LLM_MODEL'],
        max_tokens=config['LLM_MAX_TOKENS'],
        timeout=config['LLM_TIMEOUT_SECONDS'],
    )


def build_review_service(config: Dict[str, Any], llm_client: Optional[LLMClientWrapper] = None,
                         event_emitter=None) -> ReviewService:
    """Wire stores, stage registry, oracle and orchestrator from configuration."""
    if config.get('STORAGE_BACKEND') == 'memory':
        annotations = MemoryAnnotationStore()
        documents = MemoryDocumentStore(annotations=annotations)
    else:
        data_dir = Path(config.get('DATA_DIR', 'data'))
        annotations = JsonAnnotationStore(data_dir=str(data_dir / 'annotations'))
        documents = JsonDocumentStore(data_dir=str(data_dir / 'documents'), annotations=annotations)

    orchestrator = StageOrchestrator(
        documents=documents,
        annotations=annotations,
        registry=StageRegistry(),
        oracle=AnalysisOracle(llm_client),
        event_emitter=event_emitter,
    )
    return ReviewService(documents, annotations, orchestrator)


def create_app(overrides: Optional[Dict[str, Any]] = None, llm_client: Optional[LLMClientWrapper] = None):
    """Create and configure Flask application."""
    global app, socketio

    # Load configuration
    config = load_config()
    config.update(overrides or {})

    logging.basicConfig(level=getattr(logging, config.get('LOG_LEVEL', 'INFO'), logging.INFO))

    # Create Flask app
    app = Flask(__name__)

    # Apply configuration
    app.config['SECRET_KEY'] = config.get('SECRET_KEY', 'dev-secret-key')
    app.config['PERMANENT_SESSION_LIFETIME'] = timedelta(hours=24)
    app.config['MAX_CONTENT_LENGTH'] = config.get('MAX_UPLOAD_SIZE', 10 * 1024 * 1024)
    app.config['REVIEW_CONFIG'] = config

    # Setup CORS
    CORS(app, supports_credentials=True, origins=["*"])

    # Initialize Socket.IO
    socketio = SocketIO(app, cors_allowed_origins="*", async_mode='threading')

    if llm_client is None:
        llm_client = _build_llm_client(config)

    service = build_review_service(config, llm_client, event_emitter=make_review_emitter(socketio))
    app.extensions['review_service'] = service

    init_review_routes(service, socketio)
    app.register_blueprint(review_bp)
    logger.info("Review routes registered (storage: %s)", config.get('STORAGE_BACKEND'))

    register_socketio_handlers(socketio, service)

    return app, socketio


if __name__ == '__main__':
    app, socketio = create_app()
    config = app.config['REVIEW_CONFIG']
    host = config.get('HOST', '0.0.0.0')
    port = int(config.get('PORT', 8000))
    debug = config.get('DEBUG', False)

    logger.info(f"Starting server on {host}:{port}")
    socketio.run(app, host=host, port=port, debug=debug, allow_unsafe_werkzeug=True)
