"""Cron trigger API — external schedulers call these instead of the in-process scheduler."""

from fastapi import APIRouter, Depends, Query

from finrecorder.engine.scheduler import run_job
from finrecorder.api.deps import verify_cron_secret

router = APIRouter(prefix="/api/cron", tags=["cron"], dependencies=[Depends(verify_cron_secret)])


@router.post("/update-prices")
async def update_prices(market: str | None = Query(default=None, pattern="^(TW|US)$")):
    if market == "TW":
        return {"TW": await run_job("update_tw_prices")}
    if market == "US":
        return {"US": await run_job("update_us_prices")}
    return {"TW": await run_job("update_tw_prices"), "US": await run_job("update_us_prices")}


@router.post("/update-rates")
async def update_rates():
    return await run_job("update_rates")


@router.post("/snapshot-values")
async def snapshot_values():
    return await run_job("snapshot_values")
