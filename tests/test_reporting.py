"""
Тесты CSV-выгрузки бронирований.
"""

from datetime import date, timedelta

from cabin_booking.reporting.application import BookingExportService
from cabin_booking.reporting.domain import (
    EXPORT_HEADERS,
    booking_row,
    export_filename,
    render_bookings_csv,
)
from cabin_booking.reporting.infrastructure import CsvFileWriter
from cabin_booking.shared_kernel import BookingStatus, NothingToExport, WriteError

from conftest import T0, make_booking

HEADER = (
    "ID,Cabin,Capacity,Status,Requester,RequesterID,GroupMembers,"
    "DurationHours,Timestamp,CompletionTime,ApprovedBy"
)


class TestCsvFormat:
    """Тесты формата выгрузки."""

    def test_header(self):
        assert ",".join(EXPORT_HEADERS) == HEADER

    def test_completed_booking_row(self):
        booking = make_booking(
            status=BookingStatus.COMPLETED,
            approved_by="Admin (abcd)",
            completion_time=T0 + timedelta(hours=1, milliseconds=5),
        )

        assert booking_row(booking) == (
            'b1,C1,4,Completed,"Alice",user-1,"Alice; Bob; Carol; Dave",2,'
            "2024-05-01T10:00:00.000Z,2024-05-01T11:00:00.005Z,Admin (abcd)"
        )

    def test_pending_booking_has_empty_optional_columns(self):
        row = booking_row(make_booking())

        assert row.endswith("2024-05-01T10:00:00.000Z,,")

    def test_quotes_inside_names_are_doubled(self):
        booking = make_booking(members=['Al "Ace" Smith', "Bob", "Carol", "Dave"])

        assert '"Al ""Ace"" Smith"' in booking_row(booking)

    def test_rows_joined_without_trailing_newline(self):
        content = render_bookings_csv([make_booking("a"), make_booking("b")])

        lines = content.split("\n")
        assert lines[0] == HEADER
        assert len(lines) == 3
        assert not content.endswith("\n")

    def test_filename(self):
        assert export_filename(date(2024, 5, 1)) == "bookings-export-2024-05-01.csv"


class TestBookingExportService:
    """Тесты сервиса выгрузки."""

    def test_writes_file(self, tmp_path, clock):
        service = BookingExportService(CsvFileWriter(str(tmp_path)), clock=clock)

        result = service.export([make_booking()])

        assert result.ok
        assert result.value == tmp_path / "bookings-export-2024-05-01.csv"
        assert result.value.read_text(encoding="utf-8").startswith(HEADER + "\n")

    def test_creates_missing_directory(self, tmp_path, clock):
        target = tmp_path / "exports" / "daily"
        service = BookingExportService(CsvFileWriter(str(target)), clock=clock)

        result = service.export([make_booking()])

        assert result.value.parent == target

    def test_empty_set_writes_nothing(self, tmp_path, clock):
        service = BookingExportService(CsvFileWriter(str(tmp_path)), clock=clock)

        result = service.export([])

        assert isinstance(result.error, NothingToExport)
        assert list(tmp_path.iterdir()) == []

    def test_unwritable_directory_is_write_error(self, tmp_path, clock):
        # Каталог нельзя создать поверх обычного файла
        blocker = tmp_path / "blocker"
        blocker.write_text("x")
        service = BookingExportService(CsvFileWriter(str(blocker / "sub")), clock=clock)

        result = service.export([make_booking()])

        assert isinstance(result.error, WriteError)
