"""Manual triggers for the periodic Open Finance jobs.

The same sweeps run from ``scripts/run_sync_jobs.py``; each never raises
and reports per-item failures in its response.
"""

from fastapi import APIRouter, Depends

from api.helpers import get_aggregation_core, sync_outcome_dict
from schemas import BalanceSweepResponse, BatchSyncResponse, TokenRefreshSweepResponse
from services.aggregation import AggregationCore

router = APIRouter(prefix="/api/open-finance/jobs", tags=["open-finance"])


@router.post("/refresh-tokens", response_model=TokenRefreshSweepResponse)
def refresh_expiring_tokens(core: AggregationCore = Depends(get_aggregation_core)):
    result = core.jobs.refresh_expiring_tokens()
    return {"refreshed": result.refreshed, "failed": result.failed}


@router.post("/sync-accounts", response_model=BatchSyncResponse)
def sync_all_accounts(core: AggregationCore = Depends(get_aggregation_core)):
    outcomes = core.jobs.sync_all_accounts()
    succeeded = sum(1 for o in outcomes if o.success)
    return {
        "results": [sync_outcome_dict(o) for o in outcomes],
        "succeeded": succeeded,
        "failed": len(outcomes) - succeeded,
    }


@router.post("/sync-balances", response_model=BalanceSweepResponse)
def sync_all_balances(core: AggregationCore = Depends(get_aggregation_core)):
    return {"results": core.jobs.sync_all_balances()}
