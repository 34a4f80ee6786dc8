"""
Operational endpoints: trigger the reservation sweep or a counter
reconcile without waiting for the maintenance loop.
"""

from fastapi import APIRouter, Depends

from boxoffice.api.deps import get_services
from boxoffice.bootstrap import Services
from boxoffice.schemas.ticket import SweepResponse, ReconcileResponse

router = APIRouter(prefix="/admin", tags=["Admin"])


@router.post("/reservations/sweep", response_model=SweepResponse)
async def sweep_expired_reservations(services: Services = Depends(get_services)):
    expired = await services.maintenance.sweep()
    return SweepResponse(expired_reservations=expired)


@router.post("/inventory/{ticket_type_id}/reconcile", response_model=ReconcileResponse)
async def reconcile_inventory(ticket_type_id: int, services: Services = Depends(get_services)):
    return await services.inventory.reconcile(ticket_type_id)
