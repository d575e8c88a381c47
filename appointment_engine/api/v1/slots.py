from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...core.database import get_db
from ...models.doctor import ConsultationKind
from ...schemas.availability import SlotListResponse, SlotResponse
from ...services.availability_service import AvailabilityService

router = APIRouter(prefix="/slots", tags=["Slots"])

@router.get("", response_model=SlotListResponse)
def list_available_slots(
    doctor_id: int = Query(...),
    date: date = Query(...),
    consultation_type: ConsultationKind = Query(ConsultationKind.IN_PERSON),
    db: Session = Depends(get_db),
):
    """Bookable start times for a doctor on a date, sized to the consultation type."""
    plan, free = AvailabilityService(db).available_slots(doctor_id, date, consultation_type)

    return SlotListResponse(
        doctor_id=doctor_id,
        date=date,
        consultation_type=consultation_type,
        duration_minutes=plan.duration_minutes,
        available_slots=[SlotResponse(time=start.strftime("%H:%M")) for start in free],
        reason=plan.reason,
    )
