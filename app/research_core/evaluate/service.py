from __future__ import annotations

import json
import math
from typing import Any, Sequence

from loguru import logger

from app.models.results import EvaluationVerdict
from app.research_core.models.interfaces import TextCompletion
from app.services.prompt_store import render_prompt


def extract_json_object(raw_text: str) -> dict[str, Any]:
    """Parse the first JSON object in ``raw_text``, tolerating a code fence."""
    text = raw_text.strip()
    if text.startswith("```"):
        parts = text.split("```")
        if len(parts) >= 2:
            text = parts[1]
        if text.startswith("json"):
            text = text[4:]
        text = text.strip()
    start = text.find("{")
    end = text.rfind("}")
    if start < 0 or end <= start:
        raise json.JSONDecodeError("object not found", text, 0)
    try:
        parsed = json.loads(text[start : end + 1])
    except RecursionError as exc:
        raise ValueError("reply is nested too deeply") from exc
    if not isinstance(parsed, dict):
        raise json.JSONDecodeError("not an object", text, 0)
    return parsed


def format_evidence(evidence: Sequence[tuple[str, Sequence[str]]]) -> str:
    blocks = []
    for idx, (url, spans) in enumerate(evidence, start=1):
        lines = [f"Source {idx}: {url}"]
        lines.extend(f"Span {span_idx}: {span}" for span_idx, span in enumerate(spans, start=1))
        blocks.append("\n".join(lines))
    return "\n\n".join(blocks)


def _coerce_confidence(value: Any) -> float:
    try:
        confidence = float(value)
    except (TypeError, ValueError):
        return 0.0
    except OverflowError:
        return 1.0 if value > 0 else 0.0
    if math.isnan(confidence):
        return 0.0
    return min(max(confidence, 0.0), 1.0)


def _coerce_answered(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "yes", "1")
    return bool(value)


def verdict_from_payload(payload: dict[str, Any]) -> EvaluationVerdict:
    missing = payload.get("missing_facts", payload.get("missingFacts"))
    missing_facts = (
        [str(fact).strip() for fact in missing if str(fact).strip()]
        if isinstance(missing, list)
        else []
    )
    return EvaluationVerdict(
        answered=_coerce_answered(payload.get("answered")),
        confidence=_coerce_confidence(payload.get("confidence")),
        missing_facts=missing_facts,
    )


class AnswerEvaluator:
    """Ask the completion backend whether the evidence answers the query."""

    def __init__(self, completion: TextCompletion, *, max_tokens: int = 600):
        self.completion = completion
        self.max_tokens = max_tokens

    async def evaluate(
        self,
        query: str,
        evidence: Sequence[tuple[str, Sequence[str]]],
    ) -> EvaluationVerdict:
        try:
            prompt = render_prompt(
                "answer_evaluation.user",
                query=query,
                evidence=format_evidence(evidence),
            )
            text = await self.completion.complete(prompt, temperature=0, max_tokens=self.max_tokens)
        except Exception as exc:
            logger.warning(f"Answer evaluation call failed: {exc}")
            return EvaluationVerdict.neutral()

        try:
            return verdict_from_payload(extract_json_object(text or ""))
        except ValueError as exc:
            logger.warning(f"Answer evaluation reply was not valid JSON: {exc}")
            return EvaluationVerdict.neutral()
        except Exception as exc:
            logger.warning(f"Answer evaluation reply could not be read: {exc}")
            return EvaluationVerdict.neutral()
