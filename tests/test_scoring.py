import json

import httpx
import pytest

import schemas
from errors import MalformedResponse, OracleError, OracleTimeout
from models import Verdict
from scoring import ScoringClient, rank_scores

ORACLE_URL = "https://oracle.test/api"


def make_client(handler) -> ScoringClient:
    return ScoringClient(ORACLE_URL, timeout=1.0, transport=httpx.MockTransport(handler))


def prediction(verdict: str, confidence: float) -> httpx.Response:
    return httpx.Response(200, json={"result": {"prediction": verdict, "confidence": confidence}})


def score(verdict: Verdict, confidence: float, filename: str = None) -> schemas.CandidateScore:
    return schemas.CandidateScore(filename=filename, verdict=verdict, confidence=confidence)


def test_rank_scores_orders_by_verdict_then_confidence():
    scores = [
        score(Verdict.RELEVANT, 80),
        score(Verdict.NOT_RELEVANT, 95),
        score(Verdict.RELEVANT, 60),
        score(Verdict.ERROR, 0),
    ]

    ranked = rank_scores(scores)

    assert [(s.verdict, s.confidence) for s in ranked] == [
        (Verdict.RELEVANT, 80),
        (Verdict.RELEVANT, 60),
        (Verdict.NOT_RELEVANT, 95),
        (Verdict.ERROR, 0),
    ]


def test_rank_scores_keeps_input_order_on_ties():
    scores = [score(Verdict.RELEVANT, 70, "a.pdf"), score(Verdict.RELEVANT, 70, "b.pdf")]

    assert [s.filename for s in rank_scores(scores)] == ["a.pdf", "b.pdf"]


@pytest.mark.asyncio
async def test_score_sends_wire_contract_and_parses_result():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return prediction("Relevant", 87.456)

    async with make_client(handler) as client:
        result = await client.score("Python developer", "Ten years of Python")

    assert seen == {
        "method": "POST",
        "url": ORACLE_URL,
        "body": {"jd": "Python developer", "resume": "Ten years of Python"},
    }
    assert result.prediction == "Relevant"
    assert result.confidence == 87.46


@pytest.mark.asyncio
async def test_timeout_maps_to_oracle_timeout():
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    async with make_client(handler) as client:
        with pytest.raises(OracleTimeout) as exc_info:
            await client.score("jd", "cv")

    assert exc_info.value.message == "ML model request timeout"


@pytest.mark.asyncio
async def test_connection_error_maps_to_oracle_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    async with make_client(handler) as client:
        with pytest.raises(OracleError) as exc_info:
            await client.score("jd", "cv")

    assert exc_info.value.oracle_status is None


@pytest.mark.asyncio
async def test_non_2xx_maps_to_oracle_error_with_status():
    async with make_client(lambda request: httpx.Response(503, text="busy")) as client:
        with pytest.raises(OracleError) as exc_info:
            await client.score("jd", "cv")

    assert exc_info.value.oracle_status == 503
    assert exc_info.value.message == "ML model error: 503"


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(200, text="<html>not json</html>"),
        httpx.Response(200, json={"prediction": "Relevant", "confidence": 50}),
        httpx.Response(200, json={"result": {"prediction": "Maybe", "confidence": 50}}),
        httpx.Response(200, json={"result": {"prediction": "Relevant", "confidence": 140}}),
    ],
)
@pytest.mark.asyncio
async def test_malformed_body_maps_to_malformed_response(response):
    async with make_client(lambda request: response) as client:
        with pytest.raises(MalformedResponse) as exc_info:
            await client.score("jd", "cv")

    assert exc_info.value.message == "Invalid response from ML model"


@pytest.mark.asyncio
async def test_score_batch_isolates_a_failing_candidate():
    """Candidate #3 of 4 times out; the other three still get real verdicts."""

    def handler(request):
        resume = json.loads(request.content)["resume"]
        if resume == "cv-3":
            raise httpx.ReadTimeout("timed out", request=request)
        return {
            "cv-1": prediction("Relevant", 80),
            "cv-2": prediction("Not Relevant", 95),
            "cv-4": prediction("Relevant", 60),
        }[resume]

    candidates = [
        schemas.ScoringCandidate(candidate_id=i, filename=f"cv-{i}.pdf", text=f"cv-{i}") for i in range(1, 5)
    ]
    async with make_client(handler) as client:
        results = await client.score_batch("jd", candidates)

    assert len(results) == 4
    assert [(r.candidate_id, r.verdict, r.confidence) for r in results] == [
        (1, Verdict.RELEVANT, 80),
        (4, Verdict.RELEVANT, 60),
        (2, Verdict.NOT_RELEVANT, 95),
        (3, Verdict.ERROR, 0),
    ]
    assert results[-1].error == "ML model request timeout"


@pytest.mark.asyncio
async def test_score_batch_calls_the_oracle_once_per_candidate_in_order():
    resumes = []

    def handler(request):
        resumes.append(json.loads(request.content)["resume"])
        return prediction("Not Relevant", 10)

    candidates = [schemas.ScoringCandidate(filename=f"{name}.txt", text=name) for name in ("ann", "bob", "cy")]
    async with make_client(handler) as client:
        await client.score_batch("jd", candidates)

    assert resumes == ["ann", "bob", "cy"]
