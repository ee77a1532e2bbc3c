"""Infrastructure models package exports."""
from .base import Base, metadata
from .booking import BookingModel, BookingServiceModel, CustomerModel
from .payment import PaymentModel, PaymentRefundModel

__all__ = [
    "Base",
    "metadata",
    "BookingModel",
    "BookingServiceModel",
    "CustomerModel",
    "PaymentModel",
    "PaymentRefundModel",
]
