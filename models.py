import enum

from sqlalchemy.orm import relationship
from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    func,
)
from database import Base


class ResourceKind(str, enum.Enum):
    JD = "jd"
    CV = "cv"


class RecordStatus(str, enum.Enum):
    ACTIVE = "active"
    ARCHIVED = "archived"


class BatchStatus(str, enum.Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class Verdict(str, enum.Enum):
    RELEVANT = "Relevant"
    NOT_RELEVANT = "Not Relevant"
    ERROR = "Error"


def _enum_column(enum_cls, **kwargs):
    # Store the enum values ("active", "Not Relevant") rather than member names
    return Column(
        Enum(enum_cls, values_callable=lambda e: [m.value for m in e], native_enum=False, length=20),
        **kwargs,
    )


class Plan(Base):
    __tablename__ = "plans"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    region = Column(String, nullable=False, default="Global")
    billing_cycle = Column(String, nullable=True)
    price = Column(Float, nullable=True)
    currency = Column(String, nullable=False, default="USD")
    jd_limit = Column(Integer, nullable=True)  # NULL means unlimited
    cv_limit = Column(Integer, nullable=True)  # NULL means unlimited
    is_active = Column(Boolean, nullable=False, default=True)
    sort_order = Column(Integer, nullable=False, default=0)

    def limit_for(self, kind: ResourceKind):
        return self.jd_limit if kind == ResourceKind.JD else self.cv_limit

    def is_unlimited(self, kind: ResourceKind) -> bool:
        if self.name == "Enterprise":
            return True
        limit = self.limit_for(kind)
        # Negative limits are a legacy spelling of "unlimited"
        return limit is None or limit < 0

    @property
    def display_name(self) -> str:
        if self.billing_cycle:
            return f"{self.name} ({self.billing_cycle})"
        return self.name


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    email = Column(String, unique=True, index=True, nullable=False)
    plan_id = Column(Integer, ForeignKey("plans.id"), nullable=True)
    jd_used = Column(Integer, default=0, nullable=False)
    cv_used = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    plan = relationship("Plan")
    job_descriptions = relationship("JobDescription", back_populates="owner")

    def used_for(self, kind: ResourceKind) -> int:
        return self.jd_used if kind == ResourceKind.JD else self.cv_used


class JobDescription(Base):
    __tablename__ = "job_descriptions"

    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=False)
    content = Column(Text, nullable=False)
    filename = Column(String, nullable=True)
    status = _enum_column(RecordStatus, nullable=False, default=RecordStatus.ACTIVE)
    ranked_cvs_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    owner = relationship("User", back_populates="job_descriptions")


class CandidateDocument(Base):
    __tablename__ = "candidate_documents"

    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    filename = Column(String, nullable=False)
    content = Column(Text, nullable=False)
    file_size = Column(Integer, nullable=True)
    status = _enum_column(RecordStatus, nullable=False, default=RecordStatus.ACTIVE)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class RankingBatch(Base):
    __tablename__ = "ranking_batches"

    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    job_description_id = Column(Integer, ForeignKey("job_descriptions.id"), nullable=False, index=True)
    status = _enum_column(BatchStatus, nullable=False, default=BatchStatus.PROCESSING)
    record_status = _enum_column(RecordStatus, nullable=False, default=RecordStatus.ACTIVE)
    error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    job_description = relationship("JobDescription")
    entries = relationship(
        "RankingEntry",
        back_populates="batch",
        order_by="RankingEntry.position",
        cascade="all, delete-orphan",
    )


class RankingEntry(Base):
    __tablename__ = "ranking_entries"

    id = Column(Integer, primary_key=True, index=True)
    batch_id = Column(Integer, ForeignKey("ranking_batches.id"), nullable=False, index=True)
    position = Column(Integer, nullable=False)
    candidate_id = Column(Integer, ForeignKey("candidate_documents.id"), nullable=True)  # NULL when extraction failed
    filename = Column(String, nullable=True)
    verdict = _enum_column(Verdict, nullable=False)
    confidence = Column(Float, nullable=False, default=0.0)
    error = Column(Text, nullable=True)

    batch = relationship("RankingBatch", back_populates="entries")


class UpgradeStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class UpgradeRequest(Base):
    __tablename__ = "upgrade_requests"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    current_plan_id = Column(Integer, ForeignKey("plans.id"), nullable=True)
    requested_plan_id = Column(Integer, ForeignKey("plans.id"), nullable=False)
    status = _enum_column(UpgradeStatus, nullable=False, default=UpgradeStatus.PENDING)
    message = Column(Text, nullable=False, default="")
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    requested_plan = relationship("Plan", foreign_keys=[requested_plan_id])
