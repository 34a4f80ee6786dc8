"""
Event browsing endpoints.
"""

from fastapi import APIRouter, Depends

from boxoffice.api.deps import get_services
from boxoffice.bootstrap import Services
from boxoffice.schemas.ticket import AvailabilityResponse

router = APIRouter(prefix="/events", tags=["Events"])


@router.get(
    "/{event_id}/ticket-types/{ticket_type_id}/availability",
    response_model=AvailabilityResponse,
)
async def get_availability(
    event_id: int,
    ticket_type_id: int,
    services: Services = Depends(get_services),
):
    """
    Remaining tickets for browsing.

    Cached for REDIS_CACHE_TTL seconds and invalidated on every change, so
    it can briefly lag. Purchases never rely on it.
    """
    return await services.inventory.get_availability(event_id, ticket_type_id)
