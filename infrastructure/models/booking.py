"""
预订/客户数据库模型

These tables belong to the booking subsystem; the payment core reads them and
updates only the booking's status, payment_status and paid_at columns.
"""
from sqlalchemy import Column, Integer, String, Numeric, DateTime, Date, ForeignKey
from sqlalchemy.orm import relationship


from .base import Base, utcnow


class CustomerModel(Base):
    __tablename__ = "customers"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)
    city = Column(String(100), nullable=False, default="Riyadh")
    country = Column(String(2), nullable=False, default="SA")


class BookingModel(Base):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True)
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=False, index=True)
    hall_id = Column(Integer, nullable=False, index=True)
    hall_name = Column(String(200), nullable=False)
    hall_cost = Column(Numeric(precision=15, scale=2), nullable=False)
    total_amount = Column(Numeric(precision=15, scale=2), nullable=False)
    currency = Column(String(3), nullable=False, default="SAR")
    status = Column(String(30), nullable=False, default="pending", index=True)
    payment_status = Column(String(20), nullable=False, default="pending")
    paid_at = Column(DateTime(timezone=True), nullable=True)
    event_date = Column(Date, nullable=True)
    updated_at = Column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )

    services = relationship("BookingServiceModel", lazy="selectin", order_by="BookingServiceModel.id")


class BookingServiceModel(Base):
    """Vendor services attached to a booking"""
    __tablename__ = "booking_services"

    id = Column(Integer, primary_key=True, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    price = Column(Numeric(precision=15, scale=2), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
