"""
Формат CSV-выгрузки бронирований.
"""

from datetime import date
from typing import Iterable, List

from ..booking.domain import Booking
from ..shared_kernel import isoformat_ms

EXPORT_HEADERS = [
    "ID",
    "Cabin",
    "Capacity",
    "Status",
    "Requester",
    "RequesterID",
    "GroupMembers",
    "DurationHours",
    "Timestamp",
    "CompletionTime",
    "ApprovedBy",
]


def _quoted(value: str) -> str:
    return '"' + value.replace('"', '""') + '"'


def booking_row(booking: Booking) -> str:
    """Строка CSV для одного бронирования."""
    return ",".join(
        [
            booking.id,
            booking.cabin_id,
            str(booking.capacity),
            booking.status.value,
            _quoted(booking.requester_name),
            booking.requester_id,
            _quoted("; ".join(booking.group_members)),
            str(booking.duration_hours),
            isoformat_ms(booking.timestamp),
            isoformat_ms(booking.completion_time),
            booking.approved_by or "",
        ]
    )


def render_bookings_csv(bookings: Iterable[Booking]) -> str:
    """CSV с заголовком; строки разделены переводом строки."""
    lines: List[str] = [",".join(EXPORT_HEADERS)]
    lines.extend(booking_row(b) for b in bookings)
    return "\n".join(lines)


def export_filename(day: date) -> str:
    return f"bookings-export-{day.isoformat()}.csv"
