"""
Analysis oracle adapter.

Turns (title, body, stage directive) into one structured request to the language
model and decodes the reply into validated annotation drafts. Three outcomes are
kept apart: the service could not be reached (OracleUnavailable), the reply is not
a findings object at all (MalformedResponse), or individual findings are invalid
(dropped and counted, the rest of the batch is kept).
"""

import json
import logging
import math
from typing import Any, Dict, List, Optional

import anthropic

from core.errors import DroppedInvalidAnnotation, MalformedResponse, OracleUnavailable
from core.models import (
    ANNOTATION_TYPES,
    SEVERITIES,
    SUMMARY_KEYS,
    AnalysisOutcome,
    AnalysisSummary,
    AnnotationDraft,
    ClaimCheck,
    empty_summary,
)
from tools.llm_client import LLMClientWrapper

logger = logging.getLogger(__name__)

FINDINGS_TOOL = "record_findings"
CLAIM_TOOL = "record_claim_check"

FINDING_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "type": {"type": "string", "enum": list(ANNOTATION_TYPES)},
        "category": {"type": "string"},
        "message": {"type": "string"},
        "suggestion": {"type": "string"},
        "startIndex": {"type": "integer", "minimum": 0},
        "endIndex": {"type": "integer", "minimum": 0},
        "confidence": {"type": "integer", "minimum": 0, "maximum": 100},
        "severity": {"type": "string", "enum": list(SEVERITIES)},
    },
    "required": ["type", "category", "message", "startIndex", "endIndex", "confidence", "severity"],
}

RESPONSE_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "results": {"type": "array", "items": FINDING_SCHEMA},
        "confidence": {"type": "integer", "minimum": 0, "maximum": 100},
        "summary": {
            "type": "object",
            "properties": {key: {"type": "integer"} for key in SUMMARY_KEYS.values()},
            "required": list(SUMMARY_KEYS.values()),
        },
    },
    "required": ["results", "confidence", "summary"],
}

CLAIM_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "isVerifiable": {"type": "boolean"},
        "confidence": {"type": "integer", "minimum": 0, "maximum": 100},
        "sources": {"type": "array", "items": {"type": "string"}},
        "suggestion": {"type": "string"},
    },
    "required": ["isVerifiable", "confidence", "sources", "suggestion"],
}

OUTPUT_CONTRACT = """For each issue found, provide:
- the exact character positions of the text segment (startIndex inclusive, endIndex exclusive, counted from the first character of Content)
- a clear explanation of the issue (message)
- an actionable suggestion for improvement (suggestion)
- a confidence score from 0 to 100
- a severity level: low, medium, high or critical
- a type: critical, warning, suggestion or verified, and a category from the list above

Report the findings by calling the record_findings tool. Include an overall confidence
score (0-100) and a summary with counts of critical, warnings, suggestions and verified.
If there are no issues, return an empty results list."""

CLAIM_DIRECTIVE = """You are a fact-checking expert. For the claim given, determine:
1. whether it can be verified against known facts
2. your confidence (0-100)
3. reliable sources that should be checked
4. how the claim could be improved

Report the result by calling the record_claim_check tool."""

# drop reasons are logged in aggregate, individual reasons at debug level
_MAX_LOGGED_REASONS = 5


def _strip_fences(text: str) -> str:
    cleaned = text.strip()
    if cleaned.startswith("```"):
        lines = cleaned.split("\n")
        if len(lines) > 2:
            cleaned = "\n".join(lines[1:-1])
    return cleaned.strip()


def parse_reply(reply: Any) -> Dict[str, Any]:
    """Decode the raw reply into the top-level findings object or raise MalformedResponse."""
    if isinstance(reply, str):
        if not reply.strip():
            raise MalformedResponse("Analysis service returned an empty reply")
        try:
            reply = json.loads(_strip_fences(reply))
        except json.JSONDecodeError as exc:
            raise MalformedResponse(f"Analysis reply is not valid JSON: {exc}") from exc

    if not isinstance(reply, dict):
        raise MalformedResponse(f"Analysis reply must be an object, got {type(reply).__name__}")

    results = reply.get("results")
    if isinstance(results, str):
        # some replies carry the array as an encoded string
        try:
            results = json.loads(results)
        except json.JSONDecodeError as exc:
            raise MalformedResponse("Analysis reply 'results' is not a list") from exc
    if not isinstance(results, list):
        raise MalformedResponse("Analysis reply is missing a 'results' list")

    decoded = dict(reply)
    decoded["results"] = results
    return decoded


def _as_int(value: Any, field: str, index: int) -> int:
    if isinstance(value, bool):
        raise DroppedInvalidAnnotation(f"'{field}' must be an integer, got a boolean", index)
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    raise DroppedInvalidAnnotation(f"'{field}' must be an integer", index)


def _as_text(value: Any, field: str, index: int) -> str:
    if not isinstance(value, str) or not value.strip():
        raise DroppedInvalidAnnotation(f"'{field}' must be a non-empty string", index)
    return value


def validate_finding(item: Any, index: int, body_length: int) -> AnnotationDraft:
    """Validate one finding and clamp its range to the body; raises DroppedInvalidAnnotation."""
    if not isinstance(item, dict):
        raise DroppedInvalidAnnotation("finding is not an object", index)

    kind = item.get("type")
    if kind not in ANNOTATION_TYPES:
        raise DroppedInvalidAnnotation(f"unknown type {kind!r}", index)
    severity = item.get("severity")
    if severity not in SEVERITIES:
        raise DroppedInvalidAnnotation(f"unknown severity {severity!r}", index)

    category = _as_text(item.get("category"), "category", index)
    message = _as_text(item.get("message"), "message", index)

    suggestion = item.get("suggestion")
    if suggestion is not None and not isinstance(suggestion, str):
        raise DroppedInvalidAnnotation("'suggestion' must be a string", index)
    if isinstance(suggestion, str) and not suggestion.strip():
        suggestion = None

    if "startIndex" not in item or "endIndex" not in item:
        raise DroppedInvalidAnnotation("missing startIndex/endIndex", index)
    start = _as_int(item["startIndex"], "startIndex", index)
    end = _as_int(item["endIndex"], "endIndex", index)
    if start < 0:
        raise DroppedInvalidAnnotation("startIndex is negative", index)
    end = min(end, body_length)
    if start >= end:
        raise DroppedInvalidAnnotation(f"empty range [{start}, {end}) after clamping", index)

    if "confidence" not in item:
        raise DroppedInvalidAnnotation("missing confidence", index)
    confidence = _as_int(item["confidence"], "confidence", index)
    if not 0 <= confidence <= 100:
        raise DroppedInvalidAnnotation(f"confidence {confidence} outside 0-100", index)

    return {
        "type": kind,
        "category": category,
        "message": message,
        "suggestion": suggestion,
        "startIndex": start,
        "endIndex": end,
        "confidence": confidence,
        "severity": severity,
    }


def _clamp_confidence(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    if not math.isfinite(value):
        # json.loads accepts NaN and overflowing literals
        return 0
    return max(0, min(100, int(value)))


def summarize(annotations: List[AnnotationDraft]) -> AnalysisSummary:
    summary = empty_summary()
    for annotation in annotations:
        key = SUMMARY_KEYS[annotation["type"]]
        summary[key] += 1  # type: ignore[literal-required]
    return summary


def decode_findings(reply: Any, body_length: int) -> AnalysisOutcome:
    """Full decoding of an oracle reply against a body of ``body_length`` characters."""
    decoded = parse_reply(reply)

    annotations: List[AnnotationDraft] = []
    reasons: List[str] = []
    for index, item in enumerate(decoded["results"]):
        try:
            annotations.append(validate_finding(item, index, body_length))
        except DroppedInvalidAnnotation as exc:
            reasons.append(f"#{exc.index}: {exc.reason}")
            logger.debug("Dropped finding #%d: %s", exc.index, exc.reason)

    if reasons:
        logger.warning(
            "Dropped %d of %d findings (%s%s)",
            len(reasons),
            len(decoded["results"]),
            "; ".join(reasons[:_MAX_LOGGED_REASONS]),
            "; ..." if len(reasons) > _MAX_LOGGED_REASONS else "",
        )

    return {
        "annotations": annotations,
        "confidence": _clamp_confidence(decoded.get("confidence")),
        "summary": summarize(annotations),
        "dropped": len(reasons),
    }


class AnalysisOracle:
    """Single-request adapter between stage directives and the language model."""

    def __init__(self, llm_client: Optional[LLMClientWrapper], temperature: Optional[float] = 0.2):
        self.llm_client = llm_client
        self.temperature = temperature

    def _call(self, system_prompt: str, user_prompt: str, tool_name: str, schema: Dict[str, Any]) -> Any:
        if self.llm_client is None:
            raise OracleUnavailable("LLM not configured")
        try:
            return self.llm_client.invoke_structured(
                system_prompt,
                user_prompt,
                tool_name=tool_name,
                input_schema=schema,
                temperature=self.temperature,
            )
        except anthropic.APITimeoutError as exc:
            raise OracleUnavailable(f"Analysis service timed out: {exc}") from exc
        except anthropic.APIError as exc:
            raise OracleUnavailable(f"Analysis service error: {exc}") from exc
        except OSError as exc:
            # TimeoutError and ConnectionError from the transport
            raise OracleUnavailable(f"Analysis service unreachable: {exc}") from exc

    def run_analysis(self, title: str, body: str, directive: str) -> AnalysisOutcome:
        """
        Analyze one document against one stage directive.

        Args:
            title: Document title
            body: Full document text; offsets in the result index into it
            directive: Stage-specific analysis instructions

        Returns:
            Validated annotation drafts, overall confidence, type summary and drop count
        """
        system_prompt = f"{directive}\n\n{OUTPUT_CONTRACT}"
        user_prompt = f"Title: {title}\n\nContent: {body}"
        reply = self._call(system_prompt, user_prompt, FINDINGS_TOOL, RESPONSE_SCHEMA)
        outcome = decode_findings(reply, len(body))
        logger.info(
            "Analysis returned %d findings (%d dropped, confidence %d)",
            len(outcome["annotations"]),
            outcome["dropped"],
            outcome["confidence"],
        )
        return outcome

    def check_claim(self, claim: str, context: str = "") -> ClaimCheck:
        """Single-shot fact check of one claim."""
        user_prompt = f'Claim: "{claim}"\nContext: "{context}"'
        reply = self._call(CLAIM_DIRECTIVE, user_prompt, CLAIM_TOOL, CLAIM_SCHEMA)
        if isinstance(reply, str):
            try:
                reply = json.loads(_strip_fences(reply))
            except json.JSONDecodeError as exc:
                raise MalformedResponse(f"Claim check reply is not valid JSON: {exc}") from exc
        if not isinstance(reply, dict):
            raise MalformedResponse("Claim check reply must be an object")

        sources = reply.get("sources") or []
        if not isinstance(sources, list):
            sources = []
        suggestion = reply.get("suggestion")
        return {
            "isVerifiable": reply.get("isVerifiable") is True,
            "confidence": _clamp_confidence(reply.get("confidence")),
            "sources": [s for s in sources if isinstance(s, str)],
            "suggestion": suggestion if isinstance(suggestion, str) else "",
        }
