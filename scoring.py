"""Client for the external relevance oracle.

One POST per (job description, candidate) pair:

    request:  {"jd": "...", "resume": "..."}
    response: {"result": {"prediction": "Relevant" | "Not Relevant", "confidence": 0-100}}
"""
from functools import lru_cache
from typing import Iterable, List, Optional

import httpx
import pydantic
import structlog

import schemas
from errors import MalformedResponse, OracleError, OracleTimeout, ScoringError
from models import Verdict
from settings import get_settings

logger = structlog.get_logger(__name__)

VERDICT_ORDER = {Verdict.RELEVANT: 0, Verdict.NOT_RELEVANT: 1, Verdict.ERROR: 2}


def rank_scores(scores: Iterable[schemas.CandidateScore]) -> List[schemas.CandidateScore]:
    """Relevant, then Not Relevant, then Error; highest confidence first within each.

    The sort is stable, so remaining ties keep their input order.
    """
    return sorted(scores, key=lambda s: (VERDICT_ORDER[s.verdict], -s.confidence))


def error_score(candidate_id: Optional[int], filename: Optional[str], message: str) -> schemas.CandidateScore:
    return schemas.CandidateScore(
        candidate_id=candidate_id,
        filename=filename,
        verdict=Verdict.ERROR,
        confidence=0.0,
        error=message,
    )


class ScoringClient:
    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url
        self.timeout = timeout
        self._client = httpx.AsyncClient(
            timeout=timeout,
            transport=transport,
            headers={"Content-Type": "application/json"},
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "ScoringClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def score(self, jd_text: str, candidate_text: str) -> schemas.OraclePrediction:
        """Score one candidate. Raises a ScoringError subclass on any failure."""
        logger.debug("Sending request to oracle", jd_chars=len(jd_text), resume_chars=len(candidate_text))
        try:
            response = await self._client.post(self.base_url, json={"jd": jd_text, "resume": candidate_text})
        except httpx.TimeoutException as exc:
            raise OracleTimeout() from exc
        except httpx.HTTPError as exc:
            raise OracleError() from exc

        if not response.is_success:
            raise OracleError(response.status_code)

        try:
            parsed = schemas.OracleResponse.model_validate(response.json())
        except (ValueError, pydantic.ValidationError) as exc:
            raise MalformedResponse() from exc

        prediction = parsed.result
        prediction.confidence = round(prediction.confidence, 2)
        return prediction

    async def score_batch(
        self, jd_text: str, candidates: List[schemas.ScoringCandidate]
    ) -> List[schemas.CandidateScore]:
        """Score candidates one after another; a failing candidate becomes an Error row."""
        logger.info("Starting batch ranking", candidates=len(candidates))
        scores = []
        for index, candidate in enumerate(candidates, start=1):
            try:
                prediction = await self.score(jd_text, candidate.text)
            except ScoringError as exc:
                logger.warning(
                    "Candidate scoring failed",
                    position=index,
                    filename=candidate.filename,
                    error=exc.message,
                )
                scores.append(error_score(candidate.candidate_id, candidate.filename, exc.message))
                continue

            scores.append(
                schemas.CandidateScore(
                    candidate_id=candidate.candidate_id,
                    filename=candidate.filename,
                    verdict=Verdict(prediction.prediction),
                    confidence=prediction.confidence,
                )
            )
            logger.info(
                "Candidate scored",
                position=index,
                filename=candidate.filename,
                verdict=prediction.prediction,
                confidence=prediction.confidence,
            )

        return rank_scores(scores)


@lru_cache()
def get_scoring_client() -> ScoringClient:
    settings = get_settings()
    return ScoringClient(settings.oracle_url, timeout=settings.oracle_timeout_seconds)
