"""Booking repository - Database operations for bookings and their line items"""

from typing import Optional

from sqlalchemy.orm import Session

from ...models import Booking, BookingService, Customer


class BookingRepository:
    """Repository for booking data access"""

    @staticmethod
    def get_booking(db: Session, booking_id: int) -> Optional[Booking]:
        return db.query(Booking).filter(Booking.id == booking_id).first()

    @staticmethod
    def get_by_payment_intent(db: Session, payment_intent_id: str) -> Optional[Booking]:
        return db.query(Booking).filter(Booking.payment_intent_id == payment_intent_id).first()

    @staticmethod
    def get_customer(db: Session, customer_id: int) -> Optional[Customer]:
        return db.query(Customer).filter(Customer.id == customer_id).first()

    @staticmethod
    def create_booking(db: Session, line_items: list[dict], **booking_data) -> Booking:
        """Insert the booking and its line items in one transaction"""
        booking = Booking(**booking_data)
        booking.line_items = [BookingService(**item) for item in line_items]
        db.add(booking)
        db.commit()
        db.refresh(booking)
        return booking

    @staticmethod
    def add_line_items(db: Session, booking: Booking, line_items: list[dict], **updates) -> Booking:
        for item in line_items:
            booking.line_items.append(BookingService(**item))
        for key, value in updates.items():
            setattr(booking, key, value)
        db.commit()
        db.refresh(booking)
        return booking
