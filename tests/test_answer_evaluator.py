from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from app.research_core.evaluate.service import AnswerEvaluator, extract_json_object, verdict_from_payload

EVIDENCE = [("https://docs.example/page", ["The capital of Australia is Canberra."])]


def _completion(reply=None, error=None):
    completion = AsyncMock()
    if error is not None:
        completion.complete.side_effect = error
    else:
        completion.complete.return_value = reply
    return completion


@pytest.mark.asyncio
async def test_evaluate_parses_verdict_and_renders_evidence():
    completion = _completion('{"answered": true, "confidence": 0.9, "missing_facts": []}')
    verdict = await AnswerEvaluator(completion).evaluate("capital of australia", EVIDENCE)

    assert verdict.answered is True
    assert verdict.confidence == pytest.approx(0.9)
    assert verdict.missing_facts == []
    prompt = completion.complete.call_args.args[0]
    assert "Question: capital of australia" in prompt
    assert "Source 1: https://docs.example/page" in prompt
    assert completion.complete.call_args.kwargs["temperature"] == 0


@pytest.mark.asyncio
async def test_evaluate_accepts_fenced_json_with_camel_case_keys():
    completion = _completion('```json\n{"answered": false, "confidence": 0.2, "missingFacts": ["population"]}\n```')
    verdict = await AnswerEvaluator(completion).evaluate("q", EVIDENCE)

    assert verdict.answered is False
    assert verdict.missing_facts == ["population"]


@pytest.mark.asyncio
async def test_evaluate_returns_neutral_verdict_when_call_fails():
    completion = _completion(error=RuntimeError("gateway down"))
    verdict = await AnswerEvaluator(completion).evaluate("q", EVIDENCE)

    assert (verdict.answered, verdict.confidence, verdict.missing_facts) == (False, 0.0, [])


@pytest.mark.asyncio
async def test_evaluate_returns_neutral_verdict_for_non_json_reply():
    verdict = await AnswerEvaluator(_completion("I think so, yes.")).evaluate("q", EVIDENCE)

    assert (verdict.answered, verdict.confidence, verdict.missing_facts) == (False, 0.0, [])


def test_verdict_from_payload_clamps_confidence():
    assert verdict_from_payload({"answered": True, "confidence": 1.7}).confidence == 1.0
    assert verdict_from_payload({"answered": True, "confidence": "n/a"}).confidence == 0.0


def test_extract_json_object_rejects_arrays():
    with pytest.raises(ValueError):
        extract_json_object('["not", "an", "object"]')


@pytest.mark.asyncio
async def test_evaluate_returns_neutral_verdict_for_deeply_nested_reply():
    completion = _completion('{"a": ' * 100000 + "1" + "}" * 100000)
    verdict = await AnswerEvaluator(completion).evaluate("q", EVIDENCE)

    assert verdict.answered is False
    assert verdict.confidence == 0.0


@pytest.mark.asyncio
async def test_evaluate_clamps_confidence_too_large_for_float():
    completion = _completion('{"answered": true, "confidence": 1' + "0" * 400 + "}")
    verdict = await AnswerEvaluator(completion).evaluate("q", EVIDENCE)

    assert verdict.answered is True
    assert verdict.confidence == 1.0
