"""Background tasks for wallet pass synchronization.

Handles:
- Processing a single outbox job right after the request that wrote it
- Sweeping due (new or backed-off) jobs the queue missed
"""

import uuid
from typing import Optional

from libs.common.logging import get_logger
from libs.db.config import AsyncSessionLocal
from services.loyalty_service.services import wallet_pass_sync
from services.loyalty_service.services.wallet_pass_client import (
    HttpWalletPassProvisioner,
)

logger = get_logger(__name__)


async def process_wallet_pass_job(job_id: str) -> Optional[str]:
    provisioner = HttpWalletPassProvisioner.from_settings()
    if provisioner is None:
        logger.info("Wallet pass provisioner not configured; job %s stays pending", job_id)
        return None

    async with AsyncSessionLocal() as db:
        status = await wallet_pass_sync.process_wallet_pass_job(
            db, uuid.UUID(job_id), provisioner
        )
    return status.value if status else None


async def process_due_wallet_pass_jobs() -> int:
    provisioner = HttpWalletPassProvisioner.from_settings()
    if provisioner is None:
        return 0
    return await wallet_pass_sync.process_due_wallet_pass_jobs(
        AsyncSessionLocal, provisioner
    )
