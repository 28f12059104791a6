import threading
from typing import Any, Dict, List

import pytest

from core.annotations import JsonAnnotationStore, MemoryAnnotationStore
from core.oracle import AnalysisOracle
from core.orchestrator import StageOrchestrator
from core.review import ReviewService
from core.stages import StageRegistry
from core.store import JsonDocumentStore, MemoryDocumentStore


class FakeLLMClient:
    """Scripted stand-in for LLMClientWrapper.invoke_structured.

    Each queued reply is returned once, in order; an exception instance is raised
    instead of returned. When the queue is empty ``default`` is returned.
    """

    def __init__(self, *replies: Any, default: Any = None):
        self.replies: List[Any] = list(replies)
        self.default = default if default is not None else {"results": [], "confidence": 90, "summary": {}}
        self.calls: List[Dict[str, Any]] = []

    def queue(self, *replies: Any) -> None:
        self.replies.extend(replies)

    def invoke_structured(self, system_prompt, user_prompt, tool_name, input_schema,
                          tool_description="", temperature=None, max_tokens=None):
        self.calls.append({
            "system_prompt": system_prompt,
            "user_prompt": user_prompt,
            "tool_name": tool_name,
            "input_schema": input_schema,
            "temperature": temperature,
        })
        reply = self.replies.pop(0) if self.replies else self.default
        if isinstance(reply, BaseException):
            raise reply
        return reply


class BlockingLLMClient(FakeLLMClient):
    """Fake client that waits on ``release`` before replying; ``entered`` is set on call."""

    def __init__(self, *replies: Any, default: Any = None):
        super().__init__(*replies, default=default)
        self.entered = threading.Event()
        self.release = threading.Event()

    def invoke_structured(self, *args, **kwargs):
        self.entered.set()
        self.release.wait(timeout=5)
        return super().invoke_structured(*args, **kwargs)


def finding(**overrides) -> Dict[str, Any]:
    item = {
        "type": "warning",
        "category": "grammar",
        "message": "Subject-verb agreement",
        "suggestion": "use 'were'",
        "startIndex": 0,
        "endIndex": 3,
        "confidence": 80,
        "severity": "medium",
    }
    item.update(overrides)
    return item


def reply(*findings: Dict[str, Any], confidence: Any = 85) -> Dict[str, Any]:
    return {
        "results": list(findings),
        "confidence": confidence,
        "summary": {"critical": 0, "warnings": 0, "suggestions": 0, "verified": 0},
    }


@pytest.fixture
def fake_llm():
    return FakeLLMClient()


@pytest.fixture
def registry():
    return StageRegistry()


@pytest.fixture
def annotation_store():
    return MemoryAnnotationStore()


@pytest.fixture
def document_store(annotation_store):
    return MemoryDocumentStore(annotations=annotation_store)


@pytest.fixture
def json_stores(tmp_path):
    annotations = JsonAnnotationStore(data_dir=str(tmp_path / "annotations"))
    documents = JsonDocumentStore(data_dir=str(tmp_path / "documents"), annotations=annotations)
    return documents, annotations


@pytest.fixture
def events():
    return []


@pytest.fixture
def oracle(fake_llm):
    return AnalysisOracle(fake_llm)


@pytest.fixture
def orchestrator(document_store, annotation_store, registry, oracle, events):
    return StageOrchestrator(
        documents=document_store,
        annotations=annotation_store,
        registry=registry,
        oracle=oracle,
        event_emitter=lambda doc_id, event_type, data: events.append((doc_id, event_type, data)),
    )


@pytest.fixture
def service(document_store, annotation_store, orchestrator):
    return ReviewService(document_store, annotation_store, orchestrator)


@pytest.fixture
def app(fake_llm):
    from app.server import create_app

    flask_app, _ = create_app({"STORAGE_BACKEND": "memory", "SECRET_KEY": "test"}, llm_client=fake_llm)
    flask_app.config["TESTING"] = True
    return flask_app


@pytest.fixture
def client(app):
    return app.test_client()
