"""
Test Suite for the HTTP layer

Drives the routers through TestClient with the database and the scoring
oracle swapped for test doubles, and checks the error-to-status mapping.
"""
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from app.auth import create_access_token
from app.database import get_db
from app.main import app
from app.models.db_models import AccountStatus, SubmissionStatus, UserRole
from app.services.registry.scoring_oracle import ScoringResult, get_scoring_oracle

from .conftest import FixedOracle, PNG_BYTES


@pytest.fixture
def oracle():
    return FixedOracle(ScoringResult(
        confidence=0.85,
        reasoning="Dense mangrove saplings along the tidal edge.",
        detected_features=["mangrove saplings"],
    ))


@pytest.fixture
def client(session_factory, oracle, evidence_dir, monkeypatch):
    monkeypatch.setattr("app.config.EVIDENCE_DIR", evidence_dir)

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_scoring_oracle] = lambda: oracle
    yield TestClient(app)
    app.dependency_overrides.clear()


def auth(user):
    token = create_access_token(user.id, user.email, user.role.value)
    return {"Authorization": f"Bearer {token}"}


def upload(client, user, ecosystem="MANGROVE"):
    return client.post(
        "/submissions",
        data={"ecosystem_type": ecosystem, "lat": "-8.65", "lng": "115.22", "region": "Bali Coast"},
        files={"image": ("site.png", PNG_BYTES, "image/png")},
        headers=auth(user),
    )


def approve_to_ngo(client, fisherman, ngo):
    submission = upload(client, fisherman).json()
    response = client.post(
        f"/submissions/{submission['id']}/review",
        json={"target_status": "NGO_APPROVED", "note": "Canopy verified"},
        headers=auth(ngo),
    )
    assert response.status_code == 200
    return submission["id"]


class TestService:

    def test_root_and_health(self, client):
        assert client.get("/").json()["name"] == "BlueCarbon Ledger"
        assert client.get("/health").json()["status"] == "healthy"


class TestAuthRoutes:

    def test_register_login_me(self, client):
        response = client.post("/auth/register", json={
            "email": "asha@example.org", "name": "Asha", "password": "mangroves-2026",
        })
        assert response.status_code == 201
        assert response.json()["user"]["role"] == "FISHERMAN"
        assert response.json()["user"]["status"] == "ACTIVE"

        login = client.post("/auth/login", json={"email": "asha@example.org", "password": "mangroves-2026"})
        assert login.status_code == 200
        token = login.json()["access_token"]

        me = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert me.json()["email"] == "asha@example.org"
        assert me.json()["trust_score"] == 50

    def test_reviewers_start_pending_kyc(self, client):
        response = client.post("/auth/register", json={
            "email": "ngo@example.org", "name": "Reef NGO", "password": "seagrass-2026", "role": "NGO",
        })
        assert response.json()["user"]["status"] == "PENDING_KYC"

    def test_admin_cannot_self_register(self, client):
        response = client.post("/auth/register", json={
            "email": "boss@example.org", "name": "Boss", "password": "password123", "role": "ADMIN",
        })
        assert response.status_code == 422

    def test_bad_password(self, client, fisherman):
        response = client.post("/auth/login", json={"email": fisherman.email, "password": "wrong-password"})
        assert response.status_code == 401


class TestSubmissionRoutes:

    def test_upload(self, client, fisherman, oracle):
        response = upload(client, fisherman)

        assert response.status_code == 201
        body = response.json()
        assert body["status"] == "AI_VERIFIED"
        assert Decimal(body["credits_generated"]) == Decimal("1.5")
        assert body["timestamp"].endswith("Z")
        assert body["audit_trail"][0]["action"] == "Submission Created"
        assert oracle.calls == 1

    def test_unreadable_upload_is_422(self, client, fisherman):
        response = client.post(
            "/submissions",
            data={"ecosystem_type": "MANGROVE", "lat": "1", "lng": "2"},
            files={"image": ("notes.txt", b"plain text", "text/plain")},
            headers=auth(fisherman),
        )
        assert response.status_code == 422
        assert response.json()["error"] == "ingestion_error"

    def test_frozen_author_is_403(self, client, make_user):
        frozen = make_user(UserRole.FISHERMAN, status=AccountStatus.FROZEN)
        assert upload(client, frozen).status_code == 403

    def test_invalid_transition_is_409(self, client, fisherman, ngo):
        submission = upload(client, fisherman).json()

        response = client.post(
            f"/submissions/{submission['id']}/review",
            json={"target_status": "FIELD_CHECK"},
            headers=auth(ngo),
        )
        assert response.status_code == 409
        assert response.json()["error"] == "invalid_transition"

    def test_wrong_role_is_403(self, client, fisherman, admin):
        submission = upload(client, fisherman).json()

        response = client.post(
            f"/submissions/{submission['id']}/review",
            json={"target_status": "NGO_APPROVED"},
            headers=auth(admin),
        )
        assert response.status_code == 403
        assert response.json()["error"] == "unauthorized"

    def test_unknown_submission_is_404(self, client, ngo):
        response = client.get("/submissions/does-not-exist", headers=auth(ngo))
        assert response.status_code == 404
        assert response.json()["error"] == "not_found"

    def test_fisherman_sees_own_submissions_only(self, client, fisherman, make_user, ngo):
        other = make_user(UserRole.FISHERMAN)
        upload(client, fisherman)
        upload(client, other)

        assert client.get("/submissions", headers=auth(fisherman)).json()["total"] == 1
        assert client.get("/submissions", headers=auth(ngo)).json()["total"] == 2

    def test_audit_trail_and_queue(self, client, fisherman, ngo):
        submission_id = approve_to_ngo(client, fisherman, ngo)

        trail = client.get(f"/submissions/{submission_id}/audit-trail", headers=auth(ngo)).json()
        assert [e["sequence"] for e in trail] == [1, 2]
        assert trail[1]["from_status"] == "AI_VERIFIED"
        assert trail[1]["to_status"] == "NGO_APPROVED"

        queue = client.get("/submissions/queue/confirmation", headers=auth(ngo)).json()
        assert [s["id"] for s in queue["submissions"]] == [submission_id]


class TestIssuanceRoutes:

    def test_pause_blocks_confirmation_with_423(self, client, fisherman, ngo, admin):
        submission_id = approve_to_ngo(client, fisherman, ngo)
        assert client.post("/admin/registry/pause", json={"paused": True}, headers=auth(admin)).json()["paused"]

        blocked = client.post(
            f"/submissions/{submission_id}/review",
            json={"target_status": "APPROVED"},
            headers=auth(admin),
        )
        assert blocked.status_code == 423
        assert blocked.json()["error"] == "registry_paused"
        assert client.get(f"/submissions/{submission_id}", headers=auth(admin)).json()["status"] == "NGO_APPROVED"

        client.post("/admin/registry/pause", json={"paused": False}, headers=auth(admin))
        confirmed = client.post(
            f"/submissions/{submission_id}/review",
            json={"target_status": "APPROVED"},
            headers=auth(admin),
        )
        assert confirmed.status_code == 200
        assert confirmed.json()["status"] == SubmissionStatus.APPROVED.value
        assert confirmed.json()["credit_id"] is not None

    def test_mint_list_purchase(self, client, fisherman, ngo, admin, buyer, make_user):
        submission_id = approve_to_ngo(client, fisherman, ngo)

        minted = client.post("/credits/mint", json={"submission_id": submission_id}, headers=auth(admin))
        assert minted.status_code == 201
        credit = minted.json()
        assert credit["status"] == "AVAILABLE"
        assert Decimal(credit["price"]) == Decimal("67.50")

        listing = client.get("/credits", params={"status": "AVAILABLE"}, headers=auth(buyer)).json()
        assert [c["id"] for c in listing["credits"]] == [credit["id"]]

        bought = client.post(f"/credits/{credit['id']}/purchase", headers=auth(buyer))
        assert bought.status_code == 200
        assert bought.json()["owner_id"] == buyer.id
        assert bought.json()["purchase_date"] is not None

        rival = make_user(UserRole.CORPORATE)
        assert client.post(f"/credits/{credit['id']}/purchase", headers=auth(rival)).status_code == 409

        portfolio = client.get("/credits/portfolio", headers=auth(buyer)).json()
        assert Decimal(portfolio["total_value"]) == Decimal("67.50")

        me = client.get("/auth/me", headers=auth(fisherman)).json()
        assert Decimal(me["earnings"]) == Decimal("67.50")

    def test_mint_requires_admin(self, client, fisherman, ngo):
        submission_id = approve_to_ngo(client, fisherman, ngo)

        response = client.post("/credits/mint", json={"submission_id": submission_id}, headers=auth(ngo))
        assert response.status_code == 403

    def test_frozen_buyer_purchase_is_403(self, client, fisherman, ngo, admin, buyer):
        submission_id = approve_to_ngo(client, fisherman, ngo)
        credit = client.post("/credits/mint", json={"submission_id": submission_id}, headers=auth(admin)).json()

        frozen = client.put(f"/admin/users/{buyer.id}/status", json={"status": "FROZEN"}, headers=auth(admin))
        assert frozen.json()["status"] == "FROZEN"

        response = client.post(f"/credits/{credit['id']}/purchase", headers=auth(buyer))
        assert response.status_code == 403
        assert client.get("/credits", headers=auth(admin)).json()["credits"][0]["status"] == "AVAILABLE"

    def test_freeze_and_unfreeze_credit(self, client, fisherman, ngo, admin, buyer):
        submission_id = approve_to_ngo(client, fisherman, ngo)
        credit = client.post("/credits/mint", json={"submission_id": submission_id}, headers=auth(admin)).json()

        frozen = client.post(f"/credits/{credit['id']}/freeze", json={"note": "audit"}, headers=auth(admin))
        assert frozen.json()["status"] == "FROZEN"
        assert client.post(f"/credits/{credit['id']}/purchase", headers=auth(buyer)).status_code == 409

        restored = client.post(f"/credits/{credit['id']}/unfreeze", headers=auth(admin))
        assert restored.json()["status"] == "AVAILABLE"


class TestAdminRoutes:

    def test_admin_only(self, client, ngo):
        assert client.get("/admin/metrics", headers=auth(ngo)).status_code == 403

    def test_metrics_and_events(self, client, fisherman, ngo, admin, buyer):
        approve_to_ngo(client, fisherman, ngo)
        client.put(f"/admin/users/{buyer.id}/trust-score", json={"trust_score": 80}, headers=auth(admin))

        metrics = client.get("/admin/metrics", headers=auth(admin)).json()
        assert metrics["total_submissions"] == 1
        assert metrics["confirmation_queue"] == 1
        assert metrics["ai_agreement_rate"] == 100.0
        assert {s["type"] for s in metrics["risk_signals"]} == {"Duplicate GPS", "Low Confidence", "Override Rate"}
        assert metrics["registry_paused"] is False

        events = client.get("/admin/events", headers=auth(admin)).json()
        assert [e["action"] for e in events] == ["TRUST_SCORE_SET"]

    def test_trust_score_bounds(self, client, admin, buyer):
        response = client.put(f"/admin/users/{buyer.id}/trust-score", json={"trust_score": 150}, headers=auth(admin))
        assert response.status_code == 422

    def test_list_users(self, client, admin, fisherman, buyer):
        users = client.get("/admin/users", headers=auth(admin)).json()
        assert users["total"] == 3

        buyers = client.get("/admin/users", params={"role": "CORPORATE"}, headers=auth(admin)).json()
        assert [u["id"] for u in buyers["users"]] == [buyer.id]
