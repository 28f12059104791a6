import json
import logging

import anthropic
import httpx
import pytest

from conftest import FakeLLMClient, finding, reply
from core.errors import DroppedInvalidAnnotation, MalformedResponse, OracleUnavailable
from core.oracle import (
    CLAIM_TOOL,
    FINDINGS_TOOL,
    AnalysisOracle,
    decode_findings,
    parse_reply,
    validate_finding,
)

BODY = "Jon Smith said the economy grew 75% in 2023."


# ---------------------------------------------------------------------------
# parse_reply
# ---------------------------------------------------------------------------

def test_parse_reply_accepts_dict():
    assert parse_reply(reply())["results"] == []


def test_parse_reply_accepts_fenced_json_text():
    text = "```json\n" + json.dumps(reply(finding())) + "\n```"
    assert len(parse_reply(text)["results"]) == 1


def test_parse_reply_decodes_string_results():
    decoded = parse_reply({"results": json.dumps([finding()]), "confidence": 50})
    assert decoded["results"][0]["category"] == "grammar"


@pytest.mark.parametrize("bad", ["", "   ", "not json", "[1, 2]", 42, {"confidence": 80}, {"results": {"a": 1}}])
def test_parse_reply_rejects_non_findings(bad):
    with pytest.raises(MalformedResponse):
        parse_reply(bad)


# ---------------------------------------------------------------------------
# validate_finding
# ---------------------------------------------------------------------------

def test_validate_finding_keeps_valid_item():
    draft = validate_finding(finding(startIndex=30, endIndex=33), 0, len(BODY))
    assert draft["startIndex"] == 30
    assert draft["endIndex"] == 33
    assert draft["suggestion"] == "use 'were'"


def test_end_index_is_clamped_to_body_length():
    draft = validate_finding(finding(startIndex=40, endIndex=500), 0, len(BODY))
    assert draft["endIndex"] == len(BODY)


def test_blank_suggestion_becomes_none():
    assert validate_finding(finding(suggestion="  "), 0, 10)["suggestion"] is None
    item = finding()
    del item["suggestion"]
    assert validate_finding(item, 0, 10)["suggestion"] is None


def test_integral_float_offsets_are_accepted():
    draft = validate_finding(finding(startIndex=1.0, endIndex=4.0), 0, 10)
    assert (draft["startIndex"], draft["endIndex"]) == (1, 4)


@pytest.mark.parametrize(
    "overrides",
    [
        {"type": "nitpick"},
        {"severity": "extreme"},
        {"category": ""},
        {"message": None},
        {"suggestion": 12},
        {"startIndex": -1},
        {"startIndex": 5, "endIndex": 5},
        {"startIndex": 8, "endIndex": 3},
        {"startIndex": 50, "endIndex": 60},
        {"startIndex": "3"},
        {"startIndex": True},
        {"confidence": 101},
        {"confidence": -5},
        {"confidence": 1.5},
    ],
)
def test_invalid_findings_are_dropped(overrides):
    with pytest.raises(DroppedInvalidAnnotation):
        validate_finding(finding(**overrides), 3, len(BODY))


def test_missing_range_or_confidence_is_dropped():
    for field in ("startIndex", "endIndex", "confidence"):
        item = finding()
        del item[field]
        with pytest.raises(DroppedInvalidAnnotation):
            validate_finding(item, 0, len(BODY))


def test_drop_records_item_index():
    with pytest.raises(DroppedInvalidAnnotation) as info:
        validate_finding("oops", 7, 10)
    assert info.value.index == 7


# ---------------------------------------------------------------------------
# decode_findings
# ---------------------------------------------------------------------------

def test_invalid_items_are_dropped_and_rest_kept(caplog):
    raw = reply(
        finding(type="critical", startIndex=30, endIndex=33),
        finding(confidence=150),
        finding(type="verified", startIndex=0, endIndex=9),
        finding(startIndex=60, endIndex=70),
    )
    with caplog.at_level(logging.WARNING, logger="core.oracle"):
        outcome = decode_findings(raw, len(BODY))

    assert len(outcome["annotations"]) == 2
    assert outcome["dropped"] == 2
    assert "Dropped 2 of 4 findings" in caplog.text


def test_summary_is_recomputed_from_kept_annotations():
    raw = reply(
        finding(type="critical"),
        finding(type="warning"),
        finding(type="warning"),
        finding(type="suggestion"),
    )
    raw["summary"] = {"critical": 9, "warnings": 9, "suggestions": 9, "verified": 9}
    outcome = decode_findings(raw, len(BODY))
    assert outcome["summary"] == {"critical": 1, "warnings": 2, "suggestions": 1, "verified": 0}


@pytest.mark.parametrize(
    "raw_confidence,expected",
    [(85, 85), (140, 100), (-3, 0), (None, 0), ("high", 0), (72.9, 72),
     (float("nan"), 0), (float("inf"), 0), (float("-inf"), 0)],
)
def test_overall_confidence_is_clamped(raw_confidence, expected):
    assert decode_findings(reply(confidence=raw_confidence), 10)["confidence"] == expected


@pytest.mark.parametrize("literal", ["NaN", "Infinity", "-Infinity", "1e400"])
def test_non_finite_confidence_in_text_reply(literal):
    text = '{"results": [], "confidence": ' + literal + '}'
    assert decode_findings(text, 10)["confidence"] == 0


def test_empty_results_are_a_valid_outcome():
    outcome = decode_findings(reply(), 10)
    assert outcome["annotations"] == []
    assert outcome["dropped"] == 0
    assert outcome["summary"] == {"critical": 0, "warnings": 0, "suggestions": 0, "verified": 0}


# ---------------------------------------------------------------------------
# AnalysisOracle
# ---------------------------------------------------------------------------

def test_run_analysis_sends_directive_title_and_body():
    llm = FakeLLMClient(reply(finding(startIndex=30, endIndex=33)))
    outcome = AnalysisOracle(llm).run_analysis("Economy", BODY, "Check every number.")

    assert len(outcome["annotations"]) == 1
    call = llm.calls[0]
    assert call["tool_name"] == FINDINGS_TOOL
    assert call["system_prompt"].startswith("Check every number.")
    assert call["user_prompt"] == f"Title: Economy\n\nContent: {BODY}"
    assert "results" in call["input_schema"]["properties"]


def test_unconfigured_oracle_is_unavailable():
    with pytest.raises(OracleUnavailable):
        AnalysisOracle(None).run_analysis("t", "body", "d")


_REQUEST = httpx.Request("POST", "https://api.anthropic.com/v1/messages")


@pytest.mark.parametrize(
    "exc",
    [
        TimeoutError("timed out"),
        ConnectionError("refused"),
        anthropic.APITimeoutError(request=_REQUEST),
        anthropic.APIConnectionError(request=_REQUEST),
        anthropic.APIStatusError(
            "overloaded", response=httpx.Response(529, request=_REQUEST), body=None
        ),
    ],
)
def test_transport_errors_are_unavailable(exc):
    with pytest.raises(OracleUnavailable):
        AnalysisOracle(FakeLLMClient(exc)).run_analysis("t", "body", "d")


def test_garbage_reply_is_malformed():
    with pytest.raises(MalformedResponse):
        AnalysisOracle(FakeLLMClient("I found no issues!")).run_analysis("t", "body", "d")


def test_check_claim_normalizes_reply():
    llm = FakeLLMClient({
        "isVerifiable": True,
        "confidence": 120,
        "sources": ["Bureau of Economic Analysis", 7],
        "suggestion": "Cite the BEA release.",
    })
    result = AnalysisOracle(llm).check_claim("The economy grew 75% in 2023", "budget story")

    assert result == {
        "isVerifiable": True,
        "confidence": 100,
        "sources": ["Bureau of Economic Analysis"],
        "suggestion": "Cite the BEA release.",
    }
    assert llm.calls[0]["tool_name"] == CLAIM_TOOL
    assert "budget story" in llm.calls[0]["user_prompt"]


def test_check_claim_rejects_non_object():
    with pytest.raises(MalformedResponse):
        AnalysisOracle(FakeLLMClient("[]")).check_claim("claim")


def test_check_claim_with_non_finite_confidence():
    llm = FakeLLMClient('{"isVerifiable": false, "confidence": NaN, "sources": [], "suggestion": ""}')
    assert AnalysisOracle(llm).check_claim("Crime fell 90%.")["confidence"] == 0
