"""Admin loyalty management endpoints."""

import uuid
from typing import Literal

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query
from fastapi import Response, status
from libs.auth.dependencies import require_admin
from libs.auth.models import AuthUser
from libs.common.logging import get_logger
from libs.db.session import get_async_db
from services.loyalty_service.models import (
    EarnSource,
    LoyaltyMembership,
    LoyaltyProgram,
)
from services.loyalty_service.routers.responses import apply_status
from services.loyalty_service.schemas import (
    AdminRedeemRequest,
    EarnResponse,
    ManualEarnRequest,
    MemberListResponse,
    MemberResponse,
    ProgramCreateRequest,
    ProgramResponse,
    ProgramStatusUpdate,
    QrPayloadResponse,
    RedeemResponse,
    TokenRotationResponse,
    WalletPassJobResponse,
)
from services.loyalty_service.services.errors import (
    MembershipNotFound,
    ProgramNotFound,
    ProgramTransitionError,
    WalletPassNotConfigured,
)
from services.loyalty_service.services.member_directory import (
    get_membership,
    list_members,
    members_csv,
)
from services.loyalty_service.services.program_admin import (
    create_program,
    get_program,
    set_program_status,
)
from services.loyalty_service.services.qr_payload import QrMode, build_qr_url
from services.loyalty_service.services.redemption_tracker import redeem
from services.loyalty_service.services.stamp_ledger import earn
from services.loyalty_service.services.token_authority import rotate_earn_token
from services.loyalty_service.services.wallet_pass_sync import (
    kick_wallet_pass_jobs,
    request_wallet_pass_retry,
)
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)
router = APIRouter(prefix="/admin/loyalty", tags=["admin-loyalty"])


async def _program_or_404(db: AsyncSession, public_id: str) -> LoyaltyProgram:
    try:
        return await get_program(db, public_id)
    except ProgramNotFound:
        raise HTTPException(status_code=404, detail="Program not found")


async def _membership_or_404(
    db: AsyncSession, membership_id: uuid.UUID
) -> LoyaltyMembership:
    try:
        return await get_membership(db, membership_id)
    except MembershipNotFound:
        raise HTTPException(status_code=404, detail="Membership not found")


# ---------------------------------------------------------------------------
# Programs
# ---------------------------------------------------------------------------


@router.post(
    "/programs", response_model=ProgramResponse, status_code=status.HTTP_201_CREATED
)
async def create_loyalty_program(
    payload: ProgramCreateRequest,
    admin: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    program = await create_program(db, **payload.model_dump())
    logger.info("Admin %s created program %s", admin.user_id, program.public_id)
    return program


@router.get("/programs/{public_id}", response_model=ProgramResponse)
async def get_loyalty_program(
    public_id: str,
    _admin: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    return await _program_or_404(db, public_id)


@router.patch("/programs/{public_id}/status", response_model=ProgramResponse)
async def update_program_status(
    public_id: str,
    payload: ProgramStatusUpdate,
    admin: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    program = await _program_or_404(db, public_id)
    try:
        program = await set_program_status(db, program, payload.status)
    except ProgramTransitionError as e:
        raise HTTPException(status_code=409, detail=str(e))
    logger.info(
        "Admin %s set program %s to %s",
        admin.user_id,
        public_id,
        payload.status.value,
    )
    return program


@router.post("/programs/{public_id}/rotate-token", response_model=TokenRotationResponse)
async def rotate_program_token(
    public_id: str,
    admin: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    """Mint a new earn token. Previously printed till codes stop working."""
    program = await _program_or_404(db, public_id)
    token = await rotate_earn_token(db, program)
    logger.info("Admin %s rotated earn token for %s", admin.user_id, public_id)
    return TokenRotationResponse(
        program_public_id=public_id,
        earn_url=build_qr_url(public_id, QrMode.EARN, token=token),
        rotated_at=program.earn_token_rotated_at,
    )


@router.get("/programs/{public_id}/qr", response_model=QrPayloadResponse)
async def program_qr_payloads(
    public_id: str,
    _admin: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    """URLs to encode in the till (earn) and onboarding (join) QR codes."""
    program = await _program_or_404(db, public_id)
    return QrPayloadResponse(
        program_public_id=public_id,
        earn_url=build_qr_url(public_id, QrMode.EARN, token=program.earn_token),
        join_url=build_qr_url(public_id, QrMode.JOIN),
    )


# ---------------------------------------------------------------------------
# Members
# ---------------------------------------------------------------------------


@router.post("/programs/{public_id}/earn", response_model=EarnResponse)
async def manual_earn(
    public_id: str,
    payload: ManualEarnRequest,
    response: Response,
    background_tasks: BackgroundTasks,
    admin: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    """Credit a stamp from the back office (no QR token)."""
    result = await earn(
        db,
        program_public_id=public_id,
        token=None,
        wallet_pass_id=payload.wallet_pass_id,
        source=EarnSource.MANUAL,
    )
    apply_status(response, result.reason)
    if result.success:
        logger.info(
            "Admin %s credited a manual stamp to membership %s",
            admin.user_id,
            result.membership_id,
        )
    if result.wallet_pass_job_ids:
        background_tasks.add_task(kick_wallet_pass_jobs, result.wallet_pass_job_ids)
    return EarnResponse.from_result(result)


@router.get("/programs/{public_id}/members", response_model=MemberListResponse)
async def program_members(
    public_id: str,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=500),
    format: Literal["json", "csv"] = Query("json"),
    _admin: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    program = await _program_or_404(db, public_id)

    if format == "csv":
        content = await members_csv(db, program.id)
        return Response(
            content=content,
            media_type="text/csv",
            headers={
                "Content-Disposition": f'attachment; filename="members-{public_id}.csv"'
            },
        )

    members, total = await list_members(db, program.id, skip=skip, limit=limit)
    return MemberListResponse(
        members=[MemberResponse.model_validate(m) for m in members],
        total=total,
        skip=skip,
        limit=limit,
    )


@router.post("/memberships/{membership_id}/redeem", response_model=RedeemResponse)
async def redeem_for_member(
    membership_id: uuid.UUID,
    payload: AdminRedeemRequest,
    response: Response,
    background_tasks: BackgroundTasks,
    admin: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    await _membership_or_404(db, membership_id)
    result = await redeem(db, membership_id, redemption_id=payload.redemption_id)
    apply_status(response, result.outcome)
    if result.wallet_pass_job_ids:
        background_tasks.add_task(kick_wallet_pass_jobs, result.wallet_pass_job_ids)
    logger.info(
        "Admin %s redeem for membership %s: %s",
        admin.user_id,
        membership_id,
        result.outcome.value,
    )
    return RedeemResponse.from_result(result)


@router.post(
    "/memberships/{membership_id}/wallet-pass/retry",
    response_model=WalletPassJobResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def retry_wallet_pass(
    membership_id: uuid.UUID,
    background_tasks: BackgroundTasks,
    _admin: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    """Queue a fresh issue (or refresh) of the member's wallet pass."""
    membership = await _membership_or_404(db, membership_id)
    program = await db.get(LoyaltyProgram, membership.program_id)
    try:
        job = await request_wallet_pass_retry(db, membership, program)
    except WalletPassNotConfigured as e:
        raise HTTPException(status_code=409, detail=str(e))
    background_tasks.add_task(kick_wallet_pass_jobs, [job.id])
    return job
