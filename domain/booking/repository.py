"""
Ports onto the booking and customer subsystems.
"""
from abc import ABC, abstractmethod
from typing import Optional

from .entity import Booking, CustomerProfile


class BookingRepository(ABC):

    @abstractmethod
    async def get_by_id(self, booking_id: int, *, for_update: bool = False) -> Optional[Booking]:
        """Load a booking with its service lines"""

    @abstractmethod
    async def save(self, booking: Booking) -> Booking:
        """Persist status, payment_status and paid_at"""


class CustomerRepository(ABC):

    @abstractmethod
    async def get_profile(self, customer_id: int) -> Optional[CustomerProfile]:
        """Contact fields used to build checkout requests"""
