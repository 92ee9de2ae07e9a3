from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from adapters.entry.http.dependencies import get_alerts_use_case, get_tenant_id
from adapters.entry.http.dtos.alert_dtos import CreateAlertIn
from adapters.entry.http.envelope import ok
from core.domain.entities.trigger_entities import PriceAlertEntity
from core.use_cases.price_alerts_usecase import PriceAlertsUseCase

router = APIRouter(prefix="/alerts", tags=["alerts"])


def render_alert(alert: PriceAlertEntity) -> dict:
    return alert.model_dump(mode="json", exclude={"claim"})


@router.post("", summary="Create a price alert")
async def create_alert(
    body: CreateAlertIn,
    request: Request,
    tenant_id: Optional[str] = Depends(get_tenant_id),
    use_case: PriceAlertsUseCase = Depends(get_alerts_use_case),
):
    alert = await use_case.create_alert(tenant_id=tenant_id, **body.model_dump())
    return ok(render_alert(alert), request)


@router.get("", summary="List the alerts of one address")
async def list_alerts(
    request: Request,
    address: str = Query(..., min_length=1),
    active_only: bool = Query(False),
    use_case: PriceAlertsUseCase = Depends(get_alerts_use_case),
):
    alerts = await use_case.list_alerts(address, active_only=active_only)
    return ok([render_alert(a) for a in alerts], request)


@router.get("/history", summary="Fired alerts of one address, newest first")
async def get_history(
    request: Request,
    address: str = Query(..., min_length=1),
    limit: int = Query(50, ge=1, le=200),
    use_case: PriceAlertsUseCase = Depends(get_alerts_use_case),
):
    rows = await use_case.get_history(address, limit=limit)
    return ok([r.model_dump(mode="json") for r in rows], request)


@router.delete("/{alert_id}", summary="Deactivate an alert")
async def delete_alert(
    alert_id: str,
    request: Request,
    address: str = Query(..., min_length=1),
    use_case: PriceAlertsUseCase = Depends(get_alerts_use_case),
):
    await use_case.delete_alert(alert_id, address)
    return ok({"id": alert_id, "deleted": True}, request)
