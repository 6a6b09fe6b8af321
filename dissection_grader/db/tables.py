"""
SQLAlchemy ORM models for labs, attempts, responses and grade passback.

Column types stay portable (string ids, JSON instead of arrays) so the same
schema runs on PostgreSQL and SQLite.
"""
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from dissection_grader.models import AttemptStatus
from dissection_grader.db.database import Base

# Points and scores: two decimal places, returned as Decimal
Points = Numeric(12, 2, asdecimal=True)


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    """Current UTC time as a naive datetime (columns store UTC without zone)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Lab(Base):
    """
    A dissection lab.

    The rubric column holds the lab builder's configuration blob:
    {
        "hintPenaltyPercent": 10,
        "fuzzyMatch": true,
        "partialCredit": false,
        "acceptedAliases": {"<structure id>": ["alias", ...]},
        "categoryWeights": {"cardiovascular": 2, ...}
    }
    """
    __tablename__ = "labs"

    id = Column(String(36), primary_key=True, default=new_id)
    title = Column(String(255), nullable=False)
    max_points = Column(Points, nullable=False, default=100)
    rubric = Column(JSON, nullable=True)

    # External grade-book line item; attempts of labs without one are skipped
    gradebook_line_item = Column(String(500), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    structures = relationship(
        "LabStructure", back_populates="lab", cascade="all, delete-orphan"
    )
    attempts = relationship("LabAttempt", back_populates="lab")

    def __repr__(self):
        return f"<Lab(id={self.id}, title={self.title}, max_points={self.max_points})>"


class AnatomicalStructure(Base):
    """An anatomical feature a student must identify."""
    __tablename__ = "anatomical_structures"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(255), nullable=False)
    latin_name = Column(String(255), nullable=True)

    # Ordered tag list; the first tag is the grading category
    tags = Column(JSON, nullable=False, default=list)

    def __repr__(self):
        return f"<AnatomicalStructure(id={self.id}, name={self.name})>"


class LabStructure(Base):
    """Assignment of a structure to a lab, with its point value."""
    __tablename__ = "lab_structures"

    id = Column(String(36), primary_key=True, default=new_id)
    lab_id = Column(String(36), ForeignKey("labs.id", ondelete="CASCADE"), nullable=False)
    structure_id = Column(
        String(36), ForeignKey("anatomical_structures.id"), nullable=False
    )
    points_possible = Column(Points, nullable=False, default=1)
    order_index = Column(Integer, nullable=True)

    lab = relationship("Lab", back_populates="structures")
    structure = relationship("AnatomicalStructure")


class LabAttempt(Base):
    """One student's submission instance for a lab."""
    __tablename__ = "lab_attempts"

    id = Column(String(36), primary_key=True, default=new_id)
    lab_id = Column(String(36), ForeignKey("labs.id"), nullable=False)
    student_id = Column(String(255), nullable=False)
    status = Column(String(20), nullable=False, default=AttemptStatus.NOT_STARTED.value)
    submitted_at = Column(DateTime, nullable=True)
    graded_at = Column(DateTime, nullable=True)

    # Aggregate
    score = Column(Points, nullable=True)
    percentage = Column(Points, nullable=True)
    score_overridden = Column(Boolean, nullable=False, default=False)
    instructor_feedback = Column(Text, nullable=True)

    lti_outcome_url = Column(String(500), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    lab = relationship("Lab", back_populates="attempts")
    responses = relationship(
        "StructureResponse", back_populates="attempt", cascade="all, delete-orphan"
    )
    sync_logs = relationship("GradeSyncLog", back_populates="attempt")

    def __repr__(self):
        return f"<LabAttempt(id={self.id}, status={self.status}, score={self.score})>"


class StructureResponse(Base):
    """A student's answer for one structure in one attempt."""
    __tablename__ = "structure_responses"

    id = Column(String(36), primary_key=True, default=new_id)
    attempt_id = Column(
        String(36), ForeignKey("lab_attempts.id", ondelete="CASCADE"), nullable=False
    )
    structure_id = Column(
        String(36), ForeignKey("anatomical_structures.id"), nullable=False
    )
    student_answer = Column(Text, nullable=True)
    hints_used = Column(Integer, nullable=False, default=0)

    # Written by automatic grading
    match_type = Column(String(10), nullable=True)
    is_correct = Column(Boolean, nullable=True)
    points_earned = Column(Points, nullable=False, default=0)
    hint_penalty = Column(Points, nullable=False, default=0)
    auto_graded = Column(Boolean, nullable=False, default=True)

    # Written by instructor review
    instructor_override = Column(Points, nullable=True)

    attempt = relationship("LabAttempt", back_populates="responses")
    structure = relationship("AnatomicalStructure")


class GradeSyncLog(Base):
    """
    Append-only audit of grade-book delivery attempts.

    canvas_response holds the structured detail of the outcome, e.g.
    {"reason": "..."} for skipped deliveries or {"error": "..."} for errors.
    """
    __tablename__ = "grade_sync_log"

    id = Column(Integer, primary_key=True, autoincrement=True)
    attempt_id = Column(
        String(36), ForeignKey("lab_attempts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    canvas_status = Column(String(20), nullable=False)
    canvas_response = Column(JSON, nullable=True)
    synced_at = Column(DateTime, default=utcnow, nullable=False)

    attempt = relationship("LabAttempt", back_populates="sync_logs")


class PassbackJob(Base):
    """
    Durable grade-passback job.

    Workers claim waiting jobs whose available_at has passed; failed
    deliveries are re-scheduled with exponential backoff until
    max_attempts is reached.
    """
    __tablename__ = "passback_jobs"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(50), nullable=False, default="grade-passback")
    attempt_id = Column(
        String(36), ForeignKey("lab_attempts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    status = Column(String(20), nullable=False, default="waiting", index=True)
    attempts_made = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=3)
    backoff_delay_seconds = Column(Float, nullable=False, default=2.0)
    available_at = Column(DateTime, default=utcnow, nullable=False)
    last_error = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    finished_at = Column(DateTime, nullable=True)

    def __repr__(self):
        return f"<PassbackJob(id={self.id}, attempt={self.attempt_id}, status={self.status})>"
