from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from models import BatchStatus, RecordStatus, UpgradeStatus, Verdict


# --- Users & plans --- #
class UserCreate(BaseModel):
    email: str
    plan_id: Optional[int] = None


class User(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    email: str
    plan_id: Optional[int] = None
    jd_used: int
    cv_used: int


class Plan(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    display_name: str
    region: str
    billing_cycle: Optional[str] = None
    price: Optional[float] = None
    currency: str
    jd_limit: Optional[int] = None
    cv_limit: Optional[int] = None


class PlanSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    region: str
    billing_cycle: Optional[str] = None


class PlanAssignment(BaseModel):
    plan_id: int
    reset_usage: bool = False


class UpgradeRequestCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    plan_id: Optional[int] = Field(default=None, alias="planId")
    message: Optional[str] = None


class UpgradeRequest(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    status: UpgradeStatus
    message: str
    current_plan_id: Optional[int] = None
    requested_plan: Plan
    created_at: Optional[datetime] = None


# --- Usage --- #
class UsageSnapshot(BaseModel):
    """Ledger view of one resource kind at the moment of a reservation."""

    current: int
    limit: Optional[int] = None
    remaining: Optional[int] = None
    unlimited: bool = False


class KindUsage(BaseModel):
    used: int
    limit: Optional[int] = None
    remaining: Optional[int] = None
    unlimited: bool = False


class UsageReport(BaseModel):
    jd: KindUsage
    cv: KindUsage
    plan: Optional[PlanSummary] = None


# --- Documents --- #
class JobDescriptionCreate(BaseModel):
    title: str
    content: str
    description: Optional[str] = None
    filename: Optional[str] = None


class JobDescription(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    description: str
    content: str
    filename: Optional[str] = None
    status: RecordStatus
    ranked_cvs_count: int
    created_at: Optional[datetime] = None


class CandidateDocumentCreate(BaseModel):
    filename: str
    content: str
    file_size: Optional[int] = None


class CandidateDocument(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    filename: str
    content: str
    file_size: Optional[int] = None
    status: RecordStatus
    created_at: Optional[datetime] = None


class UploadError(BaseModel):
    filename: str
    error: str


class CandidateUploadResult(BaseModel):
    uploaded: List[CandidateDocument]
    errors: List[UploadError] = []
    usage: Optional[UsageSnapshot] = None


# --- Scoring --- #
class OraclePrediction(BaseModel):
    prediction: Literal["Relevant", "Not Relevant"]
    confidence: float = Field(ge=0, le=100)


class OracleResponse(BaseModel):
    result: OraclePrediction


class ScoringCandidate(BaseModel):
    candidate_id: Optional[int] = None
    filename: Optional[str] = None
    text: str


class CandidateScore(BaseModel):
    """One row of a ranking: a verdict, or an error marker with confidence 0."""

    model_config = ConfigDict(from_attributes=True)

    candidate_id: Optional[int] = None
    filename: Optional[str] = None
    verdict: Verdict
    confidence: float = 0.0
    error: Optional[str] = None


# --- Ranking --- #
class RankByReferenceRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    jd_id: Optional[int] = Field(default=None, alias="jdId")
    cv_ids: List[int] = Field(default_factory=list, alias="cvIds")


class JobDescriptionRef(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str


class RankingBatch(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    job_description: JobDescriptionRef
    status: BatchStatus
    error: Optional[str] = None
    entries: List[CandidateScore]
    created_at: Optional[datetime] = None
