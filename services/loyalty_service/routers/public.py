"""Member-facing loyalty routes (QR scan landing, join, card status)."""

from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query
from fastapi import Request, Response, status
from libs.common.logging import get_logger
from libs.common.rate_limit import earn_limit, hash_client_ip, limiter
from libs.db.session import get_async_db
from services.loyalty_service.routers.responses import apply_status
from services.loyalty_service.schemas import (
    EarnRequest,
    EarnResponse,
    JoinRequest,
    JoinResponse,
    MembershipStatusResponse,
    QrResolveRequest,
    QrResolveResponse,
    RedeemRequest,
    RedeemResponse,
    RewardResponse,
)
from services.loyalty_service.services.join_orchestrator import (
    MemberProfile,
    find_membership,
    join,
)
from services.loyalty_service.services.qr_payload import parse_qr_url
from services.loyalty_service.services.redemption_tracker import (
    get_available_reward,
    redeem,
)
from services.loyalty_service.services.results import RedeemOutcome
from services.loyalty_service.services.stamp_ledger import (
    earn,
    get_membership_status,
)
from services.loyalty_service.services.wallet_pass_sync import kick_wallet_pass_jobs
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

router = APIRouter(prefix="/loyalty", tags=["loyalty"])


@router.post("/earn", response_model=EarnResponse)
@limiter.limit(earn_limit)
async def earn_stamp(
    request: Request,
    response: Response,
    payload: EarnRequest,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_async_db),
):
    """Credit one stamp for a till QR scan."""
    result = await earn(
        db,
        program_public_id=payload.program_public_id,
        token=payload.token,
        wallet_pass_id=payload.wallet_pass_id,
        ip_hash=hash_client_ip(request),
    )
    apply_status(response, result.reason)
    if result.wallet_pass_job_ids:
        background_tasks.add_task(kick_wallet_pass_jobs, result.wallet_pass_job_ids)
    return EarnResponse.from_result(result)


@router.post("/join", response_model=JoinResponse)
async def join_program(
    response: Response,
    payload: JoinRequest,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_async_db),
):
    """Enroll a wallet identity in a program. Joining twice is not an error."""
    result = await join(
        db,
        program_public_id=payload.program_public_id,
        wallet_pass_id=payload.wallet_pass_id,
        profile=MemberProfile(
            first_name=payload.first_name,
            last_name=payload.last_name,
            email=payload.email,
            date_of_birth=payload.date_of_birth,
        ),
    )
    apply_status(response, result.reason)
    if result.wallet_pass_job_ids:
        background_tasks.add_task(kick_wallet_pass_jobs, result.wallet_pass_job_ids)
    return JoinResponse.from_result(result)


@router.get("/membership-status", response_model=MembershipStatusResponse)
async def membership_status(
    response: Response,
    program_public_id: str = Query(..., alias="programPublicId"),
    wallet_pass_id: str = Query(..., alias="walletPassId"),
    db: AsyncSession = Depends(get_async_db),
):
    card = await get_membership_status(db, program_public_id, wallet_pass_id)
    if card.transient_error:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        response.headers["Retry-After"] = "1"
    elif not card.program_found:
        raise HTTPException(status_code=404, detail="Program not found")
    return MembershipStatusResponse.from_status(card)


@router.get("/reward", response_model=Optional[RewardResponse])
async def available_reward(
    program_public_id: str = Query(..., alias="programPublicId"),
    wallet_pass_id: str = Query(..., alias="walletPassId"),
    db: AsyncSession = Depends(get_async_db),
):
    """The member's oldest unredeemed reward, or null."""
    membership = await find_membership(db, program_public_id, wallet_pass_id)
    if membership is None:
        return None
    reward = await get_available_reward(db, membership.id)
    if reward is None:
        return None
    return RewardResponse.from_model(reward)


@router.post("/redeem", response_model=RedeemResponse)
async def redeem_reward(
    response: Response,
    payload: RedeemRequest,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_async_db),
):
    """Close the member's reward. Repeating the call is a no-op success."""
    membership = await find_membership(
        db, payload.program_public_id, payload.wallet_pass_id
    )
    if membership is None:
        return RedeemResponse(success=False, outcome=RedeemOutcome.NO_REWARD_AVAILABLE)

    result = await redeem(db, membership.id, redemption_id=payload.redemption_id)
    apply_status(response, result.outcome)
    if result.wallet_pass_job_ids:
        background_tasks.add_task(kick_wallet_pass_jobs, result.wallet_pass_job_ids)
    return RedeemResponse.from_result(result)


@router.post("/qr/resolve", response_model=QrResolveResponse)
async def resolve_qr(payload: QrResolveRequest):
    """Decode a scanned loyalty URL into program id, mode and token."""
    try:
        parsed = parse_qr_url(payload.url)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return QrResolveResponse(
        program_public_id=parsed.program_public_id,
        mode=parsed.mode,
        token=parsed.token,
    )
