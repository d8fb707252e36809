"""
Shared fixtures for the registry test suite.

Each test gets its own in-memory SQLite database (one shared connection via
StaticPool so every session sees the same data), its own lock registry and
a temporary evidence directory.
"""
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.database import Base
from app.models import db_models  # noqa: F401  (registers tables)
from app.models.db_models import (
    AccountStatus, EcosystemType, SubmissionDB, SubmissionStatus, UserDB, UserRole,
)
from app.services.registry.audit_ledger import AuditLedger
from app.services.registry.locks import KeyedLocks
from app.services.registry.scoring_oracle import ScoringOracle, ScoringResult


# Smallest byte prefixes the image sniffer accepts
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64
JPEG_BYTES = b"\xff\xd8\xff\xe0" + b"\x00" * 64


class FixedOracle(ScoringOracle):
    """Oracle stub that always returns the same verdict."""

    def __init__(self, result: ScoringResult):
        self.result = result
        self.calls = 0

    async def score(self, image_bytes, ecosystem_type, lat, lng):
        self.calls += 1
        return self.result


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def locks():
    return KeyedLocks()


@pytest.fixture
def evidence_dir(tmp_path):
    return str(tmp_path / "evidence")


@pytest.fixture
def make_user(db):
    """Factory: make_user(role, status=ACTIVE, name=None) -> committed UserDB."""
    def _make(role: UserRole, status: AccountStatus = AccountStatus.ACTIVE, name: str = None) -> UserDB:
        user_id = str(uuid4())
        user = UserDB(
            id=user_id,
            email=f"{role.value.lower()}-{user_id[:8]}@example.org",
            name=name or f"{role.value.title()} {user_id[:4]}",
            password_hash="not-a-real-hash",
            role=role,
            status=status,
        )
        db.add(user)
        db.commit()
        return user
    return _make


@pytest.fixture
def fisherman(make_user):
    return make_user(UserRole.FISHERMAN, name="Asha Fisher")


@pytest.fixture
def ngo(make_user):
    return make_user(UserRole.NGO, name="Mangrove Trust")


@pytest.fixture
def admin(make_user):
    return make_user(UserRole.ADMIN, name="Registry Admin")


@pytest.fixture
def buyer(make_user):
    return make_user(UserRole.CORPORATE, name="Harbor Shipping Co")


@pytest.fixture
def make_submission(db, fisherman):
    """
    Factory: make_submission(status=..., ai_score=...) -> committed SubmissionDB
    with its creation audit entry, bypassing the oracle.
    """
    def _make(
        status: SubmissionStatus = SubmissionStatus.PENDING,
        ai_score: float = 0.5,
        ecosystem_type: EcosystemType = EcosystemType.MANGROVE,
        reasoning: str = "Healthy saplings visible along the shoreline.",
        author: UserDB = None,
    ) -> SubmissionDB:
        author = author or fisherman
        submission = SubmissionDB(
            id=str(uuid4()),
            user_id=author.id,
            user_name=author.name,
            latitude=-8.65,
            longitude=115.22,
            region="Bali Coast",
            image_url="/evidence/test.png",
            image_hash="0" * 64,
            ecosystem_type=ecosystem_type,
            record_hash="1" * 64,
            ai_score=ai_score,
            ai_reasoning=reasoning,
            detected_features=["saplings"],
            environmental_context="Coastal",
            status=status,
            credits_generated=Decimal("1.5") if ecosystem_type == EcosystemType.MANGROVE else Decimal("0.8"),
        )
        db.add(submission)
        db.flush()
        AuditLedger(db).append(
            submission,
            actor=author.name,
            action="Submission Created",
            actor_id=author.id,
            to_status=status,
        )
        db.commit()
        return submission
    return _make
