"""Integration tests for loyalty admin endpoints."""

import csv
import io
import uuid
from urllib.parse import parse_qs, urlparse

import pytest
from jose import jwt
from libs.auth.dependencies import get_current_user, require_admin
from libs.common.config import get_settings
from services.loyalty_service.app.main import app
from services.loyalty_service.models import (
    LoyaltyMembership,
    ProgramStatus,
    WalletPassStatus,
)
from tests.factories import (
    LoyaltyProgramFactory,
    MembershipFactory,
    RewardRedemptionFactory,
    persist,
)


def _bearer(role: str) -> dict[str, str]:
    settings = get_settings()
    token = jwt.encode(
        {"sub": "user-1", "email": "owner@test.com", "role": role},
        settings.JWT_SECRET,
        algorithm=settings.JWT_ALG,
    )
    return {"Authorization": f"Bearer {token}"}


# ---------------------------------------------------------------------------
# Programs
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.integration
async def test_create_program(loyalty_client):
    """POST /admin/loyalty/programs: creates a draft program."""
    response = await loyalty_client.post(
        "/admin/loyalty/programs",
        json={
            "businessId": "biz-1",
            "programName": "Coffee Card",
            "rewardThreshold": 8,
            "rewardDescription": "Free coffee",
            "minGapMinutes": 30,
        },
    )
    assert response.status_code == 201, response.text
    data = response.json()
    assert data["status"] == "draft"
    assert data["rewardThreshold"] == 8
    assert data["earnMode"] == "per_visit"
    assert data["walletPassEnabled"] is False
    assert data["publicId"]
    assert "earnToken" not in data


@pytest.mark.asyncio
@pytest.mark.integration
async def test_create_program_rejects_zero_threshold(loyalty_client):
    response = await loyalty_client.post(
        "/admin/loyalty/programs",
        json={"businessId": "biz-1", "rewardThreshold": 0},
    )
    assert response.status_code == 422


@pytest.mark.asyncio
@pytest.mark.integration
async def test_get_program(loyalty_client, db_session):
    program = await persist(db_session, LoyaltyProgramFactory.create())

    found = await loyalty_client.get(f"/admin/loyalty/programs/{program.public_id}")
    missing = await loyalty_client.get("/admin/loyalty/programs/nope")

    assert found.status_code == 200
    assert found.json()["id"] == str(program.id)
    assert missing.status_code == 404


@pytest.mark.asyncio
@pytest.mark.integration
async def test_program_status_transitions(loyalty_client, db_session):
    """PATCH /admin/loyalty/programs/{id}/status: archived is terminal."""
    program = await persist(
        db_session, LoyaltyProgramFactory.create(status=ProgramStatus.DRAFT)
    )
    url = f"/admin/loyalty/programs/{program.public_id}/status"

    activated = await loyalty_client.patch(url, json={"status": "active"})
    archived = await loyalty_client.patch(url, json={"status": "archived"})
    revived = await loyalty_client.patch(url, json={"status": "active"})

    assert activated.status_code == 200
    assert activated.json()["status"] == "active"
    assert archived.json()["status"] == "archived"
    assert revived.status_code == 409


@pytest.mark.asyncio
@pytest.mark.integration
async def test_pausing_program_stops_joins(loyalty_client, db_session):
    program = await persist(db_session, LoyaltyProgramFactory.create())
    join_body = {"programPublicId": program.public_id, "walletPassId": "w"}

    # Warm the program cache through a read
    assert (await loyalty_client.post("/loyalty/join", json=join_body)).status_code == 200

    await loyalty_client.patch(
        f"/admin/loyalty/programs/{program.public_id}/status",
        json={"status": "paused"},
    )
    response = await loyalty_client.post(
        "/loyalty/join",
        json={"programPublicId": program.public_id, "walletPassId": "w2"},
    )
    assert response.status_code == 409


@pytest.mark.asyncio
@pytest.mark.integration
async def test_rotate_token_invalidates_printed_codes(loyalty_client, db_session):
    """POST /admin/loyalty/programs/{id}/rotate-token: old QR stops earning."""
    program = await persist(db_session, LoyaltyProgramFactory.create())
    membership = await persist(
        db_session, MembershipFactory.create(program_id=program.id)
    )
    old_token = program.earn_token

    response = await loyalty_client.post(
        f"/admin/loyalty/programs/{program.public_id}/rotate-token"
    )
    assert response.status_code == 200
    data = response.json()
    assert data["rotatedAt"] is not None
    new_token = parse_qs(urlparse(data["earnUrl"]).query)["t"][0]
    assert new_token != old_token

    def body(token):
        return {
            "programPublicId": program.public_id,
            "token": token,
            "walletPassId": membership.wallet_pass_id,
        }

    stale = await loyalty_client.post("/loyalty/earn", json=body(old_token))
    fresh = await loyalty_client.post("/loyalty/earn", json=body(new_token))
    assert stale.status_code == 403
    assert fresh.status_code == 200
    assert fresh.json()["success"] is True


@pytest.mark.asyncio
@pytest.mark.integration
async def test_qr_payloads(loyalty_client, db_session):
    """GET /admin/loyalty/programs/{id}/qr: earn and join URLs."""
    program = await persist(db_session, LoyaltyProgramFactory.create())

    response = await loyalty_client.get(
        f"/admin/loyalty/programs/{program.public_id}/qr"
    )
    assert response.status_code == 200
    data = response.json()
    earn = urlparse(data["earnUrl"])
    join = urlparse(data["joinUrl"])
    assert earn.path == f"/loyalty/start/{program.public_id}"
    assert parse_qs(earn.query) == {"mode": ["earn"], "t": [program.earn_token]}
    assert parse_qs(join.query) == {"mode": ["join"]}


# ---------------------------------------------------------------------------
# Members
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.integration
async def test_manual_earn(loyalty_client, db_session):
    """POST /admin/loyalty/programs/{id}/earn: stamp without a QR token."""
    program = await persist(db_session, LoyaltyProgramFactory.create())
    membership = await persist(
        db_session, MembershipFactory.create(program_id=program.id)
    )

    response = await loyalty_client.post(
        f"/admin/loyalty/programs/{program.public_id}/earn",
        json={"walletPassId": membership.wallet_pass_id},
    )
    assert response.status_code == 200
    assert response.json()["newBalance"] == 1

    await db_session.refresh(membership)
    assert membership.lifetime_stamps_earned == 1
    await db_session.rollback()


@pytest.mark.asyncio
@pytest.mark.integration
async def test_manual_earn_on_archived_program(loyalty_client, db_session):
    program = await persist(
        db_session, LoyaltyProgramFactory.create(status=ProgramStatus.ARCHIVED)
    )
    response = await loyalty_client.post(
        f"/admin/loyalty/programs/{program.public_id}/earn",
        json={"walletPassId": "w"},
    )
    assert response.status_code == 409
    assert response.json()["reason"] == "program_unavailable"


@pytest.mark.asyncio
@pytest.mark.integration
async def test_list_members(loyalty_client, db_session):
    """GET /admin/loyalty/programs/{id}/members: paginated JSON."""
    program = await persist(db_session, LoyaltyProgramFactory.create())
    await persist(
        db_session,
        *[
            MembershipFactory.create(program_id=program.id, first_name=f"M{i}")
            for i in range(3)
        ],
    )

    response = await loyalty_client.get(
        f"/admin/loyalty/programs/{program.public_id}/members",
        params={"limit": 2},
    )
    assert response.status_code == 200
    data = response.json()
    assert data["total"] == 3
    assert data["limit"] == 2
    assert len(data["members"]) == 2
    member = data["members"][0]
    assert {"walletPassId", "stampsBalance", "hasWalletPass"} <= member.keys()


@pytest.mark.asyncio
@pytest.mark.integration
async def test_export_members_csv(loyalty_client, db_session):
    program = await persist(db_session, LoyaltyProgramFactory.create())
    await persist(
        db_session,
        MembershipFactory.create(
            program_id=program.id,
            first_name="Ada",
            last_name="Lovelace",
            stamps_balance=4,
            wallet_pass_status=WalletPassStatus.ISSUED,
        ),
    )

    response = await loyalty_client.get(
        f"/admin/loyalty/programs/{program.public_id}/members",
        params={"format": "csv"},
    )
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    assert "attachment" in response.headers["content-disposition"]

    rows = list(csv.DictReader(io.StringIO(response.text)))
    assert len(rows) == 1
    assert rows[0]["First Name"] == "Ada"
    assert rows[0]["Current Stamps"] == "4"
    assert rows[0]["Wallet Pass"] == "issued"


@pytest.mark.asyncio
@pytest.mark.integration
async def test_admin_redeem(loyalty_client, db_session):
    """POST /admin/loyalty/memberships/{id}/redeem: counter-side redemption."""
    program = await persist(db_session, LoyaltyProgramFactory.create())
    membership = await persist(
        db_session, MembershipFactory.create(program_id=program.id)
    )
    reward = await persist(
        db_session,
        RewardRedemptionFactory.create(
            membership_id=membership.id, program_id=program.id
        ),
    )

    response = await loyalty_client.post(
        f"/admin/loyalty/memberships/{membership.id}/redeem",
        json={"redemptionId": str(reward.id)},
    )
    assert response.status_code == 200
    assert response.json()["outcome"] == "redeemed"

    fresh = await db_session.get(
        LoyaltyMembership, membership.id, populate_existing=True
    )
    assert fresh.total_redeemed == 1
    await db_session.rollback()


@pytest.mark.asyncio
@pytest.mark.integration
async def test_admin_redeem_unknown_membership(loyalty_client):
    response = await loyalty_client.post(
        f"/admin/loyalty/memberships/{uuid.uuid4()}/redeem", json={}
    )
    assert response.status_code == 404


@pytest.mark.asyncio
@pytest.mark.integration
async def test_wallet_pass_retry(loyalty_client, db_session, kicked_jobs):
    """POST /admin/loyalty/memberships/{id}/wallet-pass/retry: queues a re-issue."""
    program = await persist(
        db_session, LoyaltyProgramFactory.create(wallet_pass_template_id="tmpl-1")
    )
    membership = await persist(
        db_session,
        MembershipFactory.create(
            program_id=program.id, wallet_pass_status=WalletPassStatus.FAILED
        ),
    )

    response = await loyalty_client.post(
        f"/admin/loyalty/memberships/{membership.id}/wallet-pass/retry"
    )
    assert response.status_code == 202, response.text
    data = response.json()
    assert data["jobType"] == "issue"
    assert data["status"] == "pending"
    kicked_jobs.assert_called_once()

    await db_session.refresh(membership)
    assert membership.wallet_pass_status == WalletPassStatus.PENDING
    await db_session.rollback()


@pytest.mark.asyncio
@pytest.mark.integration
async def test_wallet_pass_retry_without_template(loyalty_client, db_session):
    program = await persist(db_session, LoyaltyProgramFactory.create())
    membership = await persist(
        db_session, MembershipFactory.create(program_id=program.id)
    )
    response = await loyalty_client.post(
        f"/admin/loyalty/memberships/{membership.id}/wallet-pass/retry"
    )
    assert response.status_code == 409


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.integration
async def test_admin_routes_require_admin_role(loyalty_client, db_session):
    program = await persist(db_session, LoyaltyProgramFactory.create())
    app.dependency_overrides.pop(get_current_user, None)
    app.dependency_overrides.pop(require_admin, None)
    url = f"/admin/loyalty/programs/{program.public_id}"

    anonymous = await loyalty_client.get(url)
    member = await loyalty_client.get(url, headers=_bearer("authenticated"))
    admin = await loyalty_client.get(url, headers=_bearer("admin"))

    assert anonymous.status_code in (401, 403)
    assert member.status_code == 403
    assert admin.status_code == 200
