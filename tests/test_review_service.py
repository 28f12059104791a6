import pytest

from conftest import finding, reply
from app.config import load_config
from core.errors import AccessDenied, OracleUnavailable, UnknownStage
from core.oracle import AnalysisOracle
from core.orchestrator import StageOrchestrator
from core.review import ReviewService


def test_list_stages(service):
    stages = service.list_stages()
    assert len(stages) == 5
    assert set(stages[0]) == {"key", "name", "description", "directive"}


def test_upload_strips_bom_and_extension(service):
    document = service.upload_document("alice", "budget.final.txt", b"\xef\xbb\xbfTax rates rise.")
    assert document["title"] == "budget.final"
    assert document["content"] == "Tax rates rise."
    assert document["wordCount"] == 3


def test_update_cannot_touch_lifecycle_fields(service):
    document = service.create_document("alice", "Budget", "text")
    with pytest.raises(ValueError):
        service.update_document(document["id"], owner_id="alice", currentStage="legal")


def test_update_without_fields_returns_document(service):
    document = service.create_document("alice", "Budget", "text")
    assert service.update_document(document["id"], owner_id="alice") == document


def test_owner_checks(service, fake_llm):
    document = service.create_document("alice", "Budget", "text body")
    fake_llm.queue(reply(finding()))
    service.analyze_stage(document["id"], "legal", owner_id="alice")
    (annotation,) = service.query_annotations(document["id"], owner_id="alice")

    with pytest.raises(AccessDenied):
        service.get_document(document["id"], owner_id="bob")
    with pytest.raises(AccessDenied):
        service.query_annotations(document["id"], owner_id="bob")
    with pytest.raises(AccessDenied):
        service.mutate_annotation(annotation["id"], {"isResolved": True}, owner_id="bob")
    with pytest.raises(AccessDenied):
        service.delete_document(document["id"], owner_id="bob")
    assert service.get_document(document["id"])["id"] == document["id"]


def test_unknown_stage_checked_before_owner(service):
    document = service.create_document("alice", "Budget", "text")
    with pytest.raises(UnknownStage):
        service.analyze_stage(document["id"], "sports", owner_id="bob")


def test_unconfigured_oracle(document_store, annotation_store, registry):
    orchestrator = StageOrchestrator(document_store, annotation_store, registry, AnalysisOracle(None))
    service = ReviewService(document_store, annotation_store, orchestrator)
    document = service.create_document("alice", "Budget", "text")

    with pytest.raises(OracleUnavailable):
        service.analyze_default(document["id"])
    with pytest.raises(OracleUnavailable):
        service.check_claim("The sky is green.")
    assert service.get_document(document["id"])["status"] == "uploaded"


def test_load_config_reads_yaml_and_env(tmp_path, monkeypatch):
    config_file = tmp_path / "config.yaml"
    config_file.write_text("storage_backend: memory\nllm_model: claude-yaml\nport: 9000\n")
    monkeypatch.setenv("PORT", "9100")
    monkeypatch.delenv("STORAGE_BACKEND", raising=False)
    monkeypatch.delenv("LLM_MODEL", raising=False)

    config = load_config(config_file)

    assert config["STORAGE_BACKEND"] == "memory"
    assert config["LLM_MODEL"] == "claude-yaml"
    assert config["PORT"] == 9100


def test_load_config_rejects_unknown_backend(tmp_path, monkeypatch):
    monkeypatch.setenv("STORAGE_BACKEND", "postgres")
    with pytest.raises(ValueError):
        load_config(tmp_path / "missing.yaml")
