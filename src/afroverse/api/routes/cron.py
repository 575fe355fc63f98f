"""Recovery sweep endpoint for the external periodic scheduler.

- GET /cron/generation-retry - Re-trigger due and orphaned generation jobs

Requires ``Authorization: Bearer <CRON_SECRET>``.
"""

from typing import Any

import structlog
from fastapi import APIRouter, Depends

from afroverse.api.dependencies import get_scanner, verify_cron_secret
from afroverse.services.generation.recovery import RecoveryScanner

logger = structlog.get_logger()
router = APIRouter(prefix="/cron", tags=["cron"])


@router.get("/generation-retry", dependencies=[Depends(verify_cron_secret)])
async def generation_retry(scanner: RecoveryScanner = Depends(get_scanner)) -> dict[str, Any]:
    """Run one recovery sweep.

    Only enumeration is awaited; triggered executions continue in the background.

    Response 200:
        {"found": 3, "triggered": 3, "failed": 0, "reaped": 0, "durationMs": 12}
    """
    result = await scanner.scan()
    return result.to_response()
