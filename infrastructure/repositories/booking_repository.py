"""
Booking and customer repositories backed by the booking subsystem's tables.
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from core.logging_config import get_logger
from domain.booking.entity import (
    Booking,
    BookingPaymentStatus,
    BookingServiceLine,
    BookingStatus,
    CustomerProfile,
)
from domain.booking.repository import BookingRepository, CustomerRepository
from infrastructure.models.booking import BookingModel, CustomerModel


logger = get_logger(__name__)


class SQLAlchemyBookingRepository(BookingRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: BookingModel) -> Booking:
        return Booking(
            id=model.id,
            customer_id=model.customer_id,
            hall_id=model.hall_id,
            hall_name=model.hall_name,
            hall_cost=Decimal(str(model.hall_cost)),
            total_amount=Decimal(str(model.total_amount)),
            currency=model.currency,
            status=BookingStatus(model.status),
            payment_status=BookingPaymentStatus(model.payment_status),
            paid_at=model.paid_at,
            event_date=model.event_date,
            updated_at=model.updated_at,
            services=[
                BookingServiceLine(
                    id=s.id,
                    name=s.name,
                    price=Decimal(str(s.price)),
                    quantity=s.quantity,
                )
                for s in model.services
            ],
        )

    async def get_by_id(self, booking_id: int, *, for_update: bool = False) -> Optional[Booking]:
        query = (
            select(BookingModel)
            .where(BookingModel.id == booking_id)
            .execution_options(populate_existing=True)
        )
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query)
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def save(self, booking: Booking) -> Booking:
        await self.session.execute(
            update(BookingModel)
            .where(BookingModel.id == booking.id)
            .values(
                status=booking.status.value,
                payment_status=booking.payment_status.value,
                paid_at=booking.paid_at,
                updated_at=booking.updated_at or datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        logger.info(
            "booking_saved",
            booking_id=booking.id,
            status=booking.status.value,
            payment_status=booking.payment_status.value,
        )
        return booking


class SQLAlchemyCustomerRepository(CustomerRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_profile(self, customer_id: int) -> Optional[CustomerProfile]:
        result = await self.session.execute(select(CustomerModel).where(CustomerModel.id == customer_id))
        model = result.scalar_one_or_none()
        if model is None:
            return None
        return CustomerProfile(
            id=model.id,
            email=model.email,
            phone=model.phone,
            first_name=model.first_name,
            last_name=model.last_name,
            city=model.city,
            country=model.country,
        )
