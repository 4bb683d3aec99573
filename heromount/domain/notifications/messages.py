"""Plain-text bodies for booking notifications"""

from typing import Optional

from ...config import SUPPORT_EMAIL
from ...models import Booking, Worker
from ...shared.timezone import format_slot_time

WORKER_ASSIGNMENT = "worker_assignment"
CUSTOMER_CONFIRMATION = "customer_confirmation"

MESSAGE_TYPES = (WORKER_ASSIGNMENT, CUSTOMER_CONFIRMATION)


def customer_contact(booking: Booking) -> dict:
    """Name, email and phone for the registered customer or the guest block"""
    if booking.customer is not None:
        return {
            "name": booking.customer.name,
            "email": booking.customer.email,
            "phone": booking.customer.phone,
        }
    guest = booking.guest_customer_info or {}
    return {"name": guest.get("name"), "email": guest.get("email"), "phone": guest.get("phone")}


def _when(booking: Booking) -> str:
    return f"{booking.scheduled_date.strftime('%A, %B %d, %Y')} at {format_slot_time(booking.scheduled_start)}"


def _services(booking: Booking) -> str:
    return ", ".join(
        f"{item.service_name} x{item.quantity}" if item.quantity > 1 else item.service_name
        for item in booking.line_items
    )


def render(message_type: str, booking: Booking, channel: str) -> tuple[str, str]:
    """(subject, body) for a message type; SMS bodies are kept to one short paragraph"""
    worker: Optional[Worker] = booking.worker
    customer = customer_contact(booking)
    where = booking.location_address or booking.location_zipcode or "address on file"

    if message_type == WORKER_ASSIGNMENT:
        subject = f"New job assigned: {_when(booking)}"
        if channel == "sms":
            return subject, f"New TV mounting job {_when(booking)} at {where}. Booking #{booking.id}."
        body = "\n".join(
            [
                f"Hi {worker.name if worker else 'there'},",
                "",
                "You have been assigned a new job.",
                "",
                f"When: {_when(booking)} ({booking.duration_minutes} min)",
                f"Where: {where}",
                f"Customer: {customer['name'] or 'Guest'} {customer['phone'] or ''}".rstrip(),
                f"Services: {_services(booking)}",
            ]
            + ([f"Notes: {booking.location_notes}"] if booking.location_notes else [])
            + ["", f"Booking #{booking.id}"]
        )
        return subject, body

    if message_type == CUSTOMER_CONFIRMATION:
        subject = f"Your TV mounting booking is confirmed for {_when(booking)}"
        tech = worker.name if worker else "our technician"
        if channel == "sms":
            return subject, f"Your TV mounting booking is confirmed for {_when(booking)}. {tech} will be there."
        body = "\n".join(
            [
                f"Hi {customer['name'] or 'there'},",
                "",
                f"Your booking is confirmed for {_when(booking)}.",
                f"Technician: {tech}",
                f"Services: {_services(booking)}",
                f"Total: ${booking.total_price}",
                "",
                "Your card has been authorized and will be charged when the job is complete.",
                f"Questions? Reply to this email or write to {SUPPORT_EMAIL}.",
            ]
        )
        return subject, body

    raise ValueError(f"Unknown message type: {message_type}")
