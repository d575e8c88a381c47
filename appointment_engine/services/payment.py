"""Hook into the external payment collaborator."""
from decimal import Decimal
from typing import Optional

from ..core.security import UserRole
from ..models.appointment import Appointment


class PaymentCollaborator:
    """Default collaborator: refunds are settled by the payment service.

    Subclasses may compute a refund to be recorded on the cancellation;
    returning ``None`` leaves the refund amount unset.
    """

    def refund_amount(self, appointment: Appointment, cancelled_by: UserRole) -> Optional[Decimal]:
        return None
