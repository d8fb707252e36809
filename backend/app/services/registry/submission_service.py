"""
Submission Service

Ingestion and review boundaries of the registry.

Ingestion validates everything before any state exists, scores the image
with the oracle while holding no lock, then creates the submission and its
first audit entry in one unit of work. Review delegates to the state
machine, or to issuance when the target is final confirmation.
"""
import hashlib
import logging
import math
import os
from typing import List, Optional, Tuple, Union
from uuid import uuid4

from sqlalchemy.orm import Session

from ... import config
from ...models.db_models import (
    EcosystemType, SubmissionAuditLogDB, SubmissionDB, SubmissionStatus, UserDB,
    UserRole, utcnow,
)
from .audit_ledger import AuditLedger
from .authorization import ensure_active
from .errors import (
    AuthorizationError, IngestionError, NotFoundError, UpstreamUnavailable, ValidationError,
)
from .issuance import CreditIssuanceService
from .locks import KeyedLocks, registry_locks, submission_key
from .registry_gate import RegistryGate
from .scoring_oracle import ScoringOracle, ScoringResult, fallback_result, maps_url_for, sniff_mime_type
from .state_machine import SubmissionStateMachine
from .unit_of_work import atomic

logger = logging.getLogger(__name__)


DEFAULT_REGION = "Unassigned Region"
CREATION_NOTE = "Field data uploaded via mobile app."

_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
    "image/gif": "gif",
    "image/heic": "heic",
}


def compute_record_hash(
    submission_id: str,
    user_id: str,
    created_at,
    lat: float,
    lng: float,
    ecosystem_type: EcosystemType,
    image_hash: str,
) -> str:
    """Deterministic SHA-256 over a submission's identity and evidence."""
    material = "|".join([
        submission_id,
        user_id,
        created_at.isoformat(),
        f"{lat:.6f}",
        f"{lng:.6f}",
        ecosystem_type.value,
        image_hash,
    ])
    return hashlib.sha256(material.encode("utf-8")).hexdigest()


class SubmissionService:
    """Creates submissions and routes review decisions."""

    def __init__(
        self,
        db: Session,
        locks: KeyedLocks = None,
        ledger: AuditLedger = None,
        evidence_dir: Optional[str] = None,
    ):
        self.db = db
        self.locks = locks or registry_locks
        self.ledger = ledger or AuditLedger(db)
        self.gate = RegistryGate(db, locks=self.locks, ledger=self.ledger)
        self.state_machine = SubmissionStateMachine(
            db, ledger=self.ledger, gate=self.gate, locks=self.locks
        )
        self.issuance = CreditIssuanceService(
            db, locks=self.locks, ledger=self.ledger, gate=self.gate, state_machine=self.state_machine
        )
        self.evidence_dir = evidence_dir or config.EVIDENCE_DIR

    # =========================================================================
    # INGESTION
    # =========================================================================

    async def ingest(
        self,
        author_id: str,
        ecosystem_type: Union[EcosystemType, str],
        image_bytes: bytes,
        lat: Optional[float],
        lng: Optional[float],
        oracle: ScoringOracle,
        region: Optional[str] = None,
        mark_oracle_failure: Optional[bool] = None,
    ) -> SubmissionDB:
        """
        Create a submission in its initial state.

        Args:
            author_id: Community member submitting the evidence
            ecosystem_type: MANGROVE or SEAGRASS
            image_bytes: Raw uploaded photo
            lat, lng: Site coordinates in decimal degrees
            oracle: Scoring backend
            region: Optional region label
            mark_oracle_failure: Land oracle failures in AI_FAILED instead of
                PENDING (defaults to ORACLE_FAILURE_MARKS_AI_FAILED)

        Raises:
            NotFoundError: unknown author
            AuthorizationError: author is not an active community member
            ValidationError / IngestionError: bad coordinates, type or image
        """
        author = self.db.get(UserDB, author_id, populate_existing=True)
        if author is None:
            raise NotFoundError(f"User {author_id} not found")
        if author.role != UserRole.FISHERMAN:
            raise AuthorizationError("Only community members can submit field evidence")
        ensure_active(author, "submit field evidence")

        ecosystem = _parse_ecosystem(ecosystem_type)
        lat, lng = _validate_coordinates(lat, lng)
        if not image_bytes:
            raise IngestionError("Image is empty")
        mime_type = sniff_mime_type(image_bytes)
        if mime_type is None:
            raise IngestionError("Image is unreadable or not a supported format")

        # Scoring runs before the submission exists, so no lock is held
        result = await self._score(oracle, image_bytes, ecosystem, lat, lng)

        if mark_oracle_failure is None:
            mark_oracle_failure = config.ORACLE_FAILURE_MARKS_AI_FAILED
        status = initial_status(result, mark_oracle_failure)

        image_hash = hashlib.sha256(image_bytes).hexdigest()
        image_url, stored_path = self._store_evidence(image_bytes, image_hash, mime_type)
        try:
            submission = self._create(author, ecosystem, lat, lng, region, image_url, image_hash, result, status)
        except Exception:
            self._discard_evidence(stored_path)
            raise

        logger.info(
            f"Ingested submission {submission.id} from {author.id}: "
            f"{ecosystem.value} confidence={result.confidence:.2f} -> {status.value}"
        )
        return submission

    def _create(self, author, ecosystem, lat, lng, region, image_url, image_hash, result, status) -> SubmissionDB:
        """Persist the scored submission and its creation entry in one unit of work."""
        submission_id = str(uuid4())
        created_at = utcnow()
        with self.locks.hold(submission_key(submission_id)), atomic(self.db, "submission ingestion"):
            submission = SubmissionDB(
                id=submission_id,
                user_id=author.id,
                user_name=author.name,
                created_at=created_at,
                latitude=lat,
                longitude=lng,
                region=(region or "").strip() or DEFAULT_REGION,
                image_url=image_url,
                image_hash=image_hash,
                ecosystem_type=ecosystem,
                maps_url=result.maps_url or maps_url_for(lat, lng),
                record_hash=compute_record_hash(
                    submission_id, author.id, created_at, lat, lng, ecosystem, image_hash
                ),
                ai_score=result.confidence,
                ai_reasoning=result.reasoning,
                detected_features=list(result.detected_features),
                environmental_context=result.environmental_context,
                status=status,
                credits_generated=config.CREDIT_RATES[ecosystem.value],
                ai_overridden=False,
            )
            self.db.add(submission)
            self.db.flush()
            self.ledger.append(
                submission,
                actor=author.name,
                action="Submission Created",
                actor_id=author.id,
                note=CREATION_NOTE,
                to_status=status,
            )
        return submission

    async def _score(self, oracle, image_bytes, ecosystem, lat, lng) -> ScoringResult:
        try:
            return await oracle.score(image_bytes, ecosystem, lat, lng)
        except UpstreamUnavailable as e:
            logger.warning(f"Scoring oracle raised instead of falling back: {e.message}")
            return fallback_result(e.message)
        except Exception as e:
            logger.warning(f"Scoring oracle raised {type(e).__name__}; using fallback", exc_info=True)
            return fallback_result(f"oracle error ({type(e).__name__})")

    def _store_evidence(self, image_bytes: bytes, image_hash: str, mime_type: str) -> Tuple[str, Optional[str]]:
        """
        Write the image under its content hash.

        Returns its public path, and the file path when this call created the
        file (None when identical evidence was already stored).
        """
        filename = f"{image_hash}.{_EXTENSIONS[mime_type]}"
        os.makedirs(self.evidence_dir, exist_ok=True)
        path = os.path.join(self.evidence_dir, filename)
        if os.path.exists(path):
            return f"/evidence/{filename}", None
        with open(path, "wb") as f:
            f.write(image_bytes)
        return f"/evidence/{filename}", path

    @staticmethod
    def _discard_evidence(path: Optional[str]) -> None:
        if path is None:
            return
        try:
            os.remove(path)
        except OSError as e:
            logger.warning(f"Could not remove orphaned evidence {path}: {e}")

    # =========================================================================
    # REVIEW
    # =========================================================================

    def review(
        self,
        submission_id: str,
        actor: UserDB,
        target: SubmissionStatus,
        note: Optional[str] = None,
    ) -> SubmissionDB:
        """
        Apply a reviewer decision.

        Final confirmation of an NGO-approved submission mints its credit in
        the same unit of work. Repeating a transition that already happened is
        a success with no new audit entry.
        """
        if target == SubmissionStatus.APPROVED:
            submission, _ = self.issuance.confirm_and_mint(submission_id, actor, note, replay_ok=True)
            return submission

        return self.state_machine.transition(submission_id, actor, target, note).submission

    # =========================================================================
    # READS
    # =========================================================================

    def get(self, submission_id: str) -> SubmissionDB:
        return self.state_machine.load(submission_id)

    def list_submissions(
        self,
        status: Optional[SubmissionStatus] = None,
        user_id: Optional[str] = None,
    ) -> List[SubmissionDB]:
        query = self.db.query(SubmissionDB)
        if status is not None:
            query = query.filter(SubmissionDB.status == status)
        if user_id is not None:
            query = query.filter(SubmissionDB.user_id == user_id)
        return query.order_by(SubmissionDB.created_at.desc()).all()

    def confirmation_queue(self) -> List[SubmissionDB]:
        """NGO-approved submissions awaiting final confirmation, oldest first."""
        return (
            self.db.query(SubmissionDB)
            .filter(SubmissionDB.status == SubmissionStatus.NGO_APPROVED)
            .order_by(SubmissionDB.created_at.asc())
            .all()
        )

    def audit_trail(self, submission_id: str) -> List[SubmissionAuditLogDB]:
        self.state_machine.load(submission_id)
        return self.ledger.trail(submission_id)


def initial_status(result: ScoringResult, mark_oracle_failure: bool = False) -> SubmissionStatus:
    """Status a freshly scored submission starts in."""
    if result.failed and mark_oracle_failure:
        return SubmissionStatus.AI_FAILED
    if result.confidence > config.AI_VERIFIED_THRESHOLD:
        return SubmissionStatus.AI_VERIFIED
    return SubmissionStatus.PENDING


def _parse_ecosystem(value) -> EcosystemType:
    if isinstance(value, EcosystemType):
        return value
    try:
        return EcosystemType(str(value).strip().upper())
    except ValueError:
        raise ValidationError(f"Unknown ecosystem type: {value}")


def _validate_coordinates(lat, lng):
    if lat is None or lng is None:
        raise ValidationError("Coordinates are required")
    try:
        lat, lng = float(lat), float(lng)
    except (TypeError, ValueError):
        raise ValidationError("Coordinates must be numbers")
    if math.isnan(lat) or math.isnan(lng):
        raise ValidationError("Coordinates must be numbers")
    if not -90.0 <= lat <= 90.0:
        raise ValidationError(f"Latitude {lat} is outside [-90, 90]")
    if not -180.0 <= lng <= 180.0:
        raise ValidationError(f"Longitude {lng} is outside [-180, 180]")
    return lat, lng
