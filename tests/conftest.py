"""
Pytest configuration and fixtures.

Provides common test fixtures for all test modules.
"""

from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Generator, NamedTuple

import pytest
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from dissection_grader.config import Settings
from dissection_grader.db.database import create_db_engine, create_session_factory, init_db
from dissection_grader.db.tables import (
    AnatomicalStructure,
    Lab,
    LabAttempt,
    LabStructure,
    StructureResponse,
)
from dissection_grader.grading.engine import GradingEngine
from dissection_grader.models import AttemptStatus, Rubric
from dissection_grader.passback import (
    DeliveryQueue,
    PassbackEnqueuer,
    PassbackJobPayload,
    RetryPolicy,
)


# ==============================================================================
# Settings Fixtures
# ==============================================================================


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Create test settings pointing at a throwaway database."""
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'settings.db'}",
        log_level="DEBUG",
        passback_max_attempts=3,
        passback_backoff_seconds=2.0,
    )


# ==============================================================================
# Database Fixtures
# ==============================================================================


@pytest.fixture
def db_engine(tmp_path: Path) -> Generator[Engine, None, None]:
    """File-backed SQLite engine with all tables created."""
    engine = create_db_engine(f"sqlite:///{tmp_path / 'grader.db'}")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine: Engine) -> sessionmaker[Session]:
    """Session factory bound to the test database."""
    return create_session_factory(db_engine)


# ==============================================================================
# Queue Fixtures
# ==============================================================================


class RecordingQueue(DeliveryQueue):
    """Queue that accepts every job and remembers it."""

    def __init__(self) -> None:
        self.jobs: list[tuple[PassbackJobPayload, RetryPolicy]] = []

    def submit(self, payload: PassbackJobPayload, policy: RetryPolicy) -> str:
        self.jobs.append((payload, policy))
        return f"job-{len(self.jobs)}"

    @property
    def attempt_ids(self) -> list[str]:
        return [payload.attempt_id for payload, _ in self.jobs]


class FailingQueue(DeliveryQueue):
    """Queue whose broker is unreachable."""

    def __init__(self) -> None:
        self.calls = 0

    def submit(self, payload: PassbackJobPayload, policy: RetryPolicy) -> str:
        self.calls += 1
        raise ConnectionError("Connection refused: queue broker at localhost:6379")


@pytest.fixture
def recording_queue() -> RecordingQueue:
    return RecordingQueue()


@pytest.fixture
def failing_queue() -> FailingQueue:
    return FailingQueue()


@pytest.fixture
def enqueuer(session_factory: sessionmaker[Session], recording_queue: RecordingQueue) -> PassbackEnqueuer:
    return PassbackEnqueuer(session_factory, recording_queue)


@pytest.fixture
def grading_engine(
    session_factory: sessionmaker[Session], enqueuer: PassbackEnqueuer
) -> GradingEngine:
    """Grading engine that queues passback into a RecordingQueue."""
    return GradingEngine(session_factory, enqueuer)


# ==============================================================================
# Lab Fixtures
# ==============================================================================


# (name, latin name, tags) of the heart lab's structures, in lab order
HEART_STRUCTURES: list[tuple[str, str | None, list[str]]] = [
    ("Left Ventricle", "Ventriculus sinister", ["cardiovascular", "chamber"]),
    ("Right Atrium", "Atrium dextrum", ["cardiovascular", "chamber"]),
    ("Aorta", None, ["vessel"]),
    ("Pulmonary Trunk", "Truncus pulmonalis", ["vessel"]),
    ("Mitral Valve", "Valva mitralis", []),
]


class SeededLab(NamedTuple):
    """Ids of a seeded lab, its structures and one attempt."""

    lab_id: str
    attempt_id: str
    structure_ids: list[str]
    response_ids: list[str]


@pytest.fixture
def seed_lab(session_factory: sessionmaker[Session]) -> Callable[..., SeededLab]:
    """
    Factory that stores the heart lab with one attempt.

    Args (of the returned callable):
        answers: One answer per structure, in HEART_STRUCTURES order.
        rubric: Rubric blob stored on the lab. Callables receive the
            structure ids and return the blob.
        max_points: The lab's maximum points.
        points: Points possible per structure. Defaults to 1 each.
        hints: Hints used per structure. Defaults to 0 each.
        status: Initial attempt status.
    """

    def _seed(
        answers: list[str | None],
        rubric: dict[str, Any] | Callable[[list[str]], dict[str, Any]] | None = None,
        max_points: Decimal | int = 100,
        points: list[Decimal | int] | None = None,
        hints: list[int] | None = None,
        status: AttemptStatus = AttemptStatus.SUBMITTED,
    ) -> SeededLab:
        points = points or [1] * len(HEART_STRUCTURES)
        hints = hints or [0] * len(HEART_STRUCTURES)

        with session_factory.begin() as session:
            structures = [
                AnatomicalStructure(name=name, latin_name=latin, tags=tags)
                for name, latin, tags in HEART_STRUCTURES
            ]
            session.add_all(structures)
            session.flush()
            structure_ids = [s.id for s in structures]

            blob = rubric(structure_ids) if callable(rubric) else rubric
            lab = Lab(title="Heart Dissection", max_points=max_points, rubric=blob)
            session.add(lab)
            session.flush()

            for index, (structure, value) in enumerate(zip(structures, points)):
                session.add(
                    LabStructure(
                        lab_id=lab.id,
                        structure_id=structure.id,
                        points_possible=value,
                        order_index=index,
                    )
                )

            attempt = LabAttempt(lab_id=lab.id, student_id="student-1", status=status.value)
            session.add(attempt)
            session.flush()

            responses = [
                StructureResponse(
                    attempt_id=attempt.id,
                    structure_id=structure.id,
                    student_answer=answer,
                    hints_used=hint_count,
                )
                for structure, answer, hint_count in zip(structures, answers, hints)
            ]
            session.add_all(responses)
            session.flush()

            return SeededLab(
                lab_id=lab.id,
                attempt_id=attempt.id,
                structure_ids=structure_ids,
                response_ids=[r.id for r in responses],
            )

    return _seed


@pytest.fixture
def load_attempt(session_factory: sessionmaker[Session]) -> Callable[[str], LabAttempt]:
    """Load an attempt (with responses) in a fresh session."""

    def _load(attempt_id: str) -> LabAttempt:
        with session_factory() as session:
            attempt = session.get(LabAttempt, attempt_id)
            assert attempt is not None
            # Touch the relationship while the session is open
            list(attempt.responses)
            return attempt

    return _load


# ==============================================================================
# Rubric Fixtures
# ==============================================================================


@pytest.fixture
def default_rubric() -> Rubric:
    """Rubric with every setting at its default."""
    return Rubric()


@pytest.fixture
def partial_credit_rubric() -> Rubric:
    """Rubric with partial credit enabled."""
    return Rubric(partial_credit_enabled=True)
