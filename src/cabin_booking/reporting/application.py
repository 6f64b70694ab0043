"""
Прикладной слой выгрузки бронирований.
"""

from datetime import datetime
from pathlib import Path
from typing import Callable, Iterable, Optional

from ..booking import interfaces as ports
from ..booking.domain import Booking
from ..booking.infrastructure import StdlibLogger
from ..shared_kernel import NothingToExport, Outcome, WriteError, now
from .domain import export_filename, render_bookings_csv
from .infrastructure import CsvFileWriter


class BookingExportService:
    """Сервис выгрузки бронирований в CSV."""

    def __init__(
        self,
        writer: CsvFileWriter,
        clock: Callable[[], datetime] = now,
        logger: Optional[ports.ILogger] = None,
    ):
        self._writer = writer
        self._clock = clock
        self._logger = logger or StdlibLogger("cabin_booking.export")

    def export(self, bookings: Iterable[Booking]) -> Outcome[Path]:
        """Выгружает бронирования; пустой набор не создает файл."""
        bookings = list(bookings)
        if not bookings:
            self._logger.info("Nothing to export")
            return Outcome.failure(NothingToExport("Нет данных для выгрузки"))

        filename = export_filename(self._clock().date())
        try:
            path = self._writer.write(filename, render_bookings_csv(bookings))
        except OSError as e:
            self._logger.error("Export failed", filename=filename, error=str(e))
            return Outcome.failure(WriteError(f"export failed: {e}"))

        self._logger.info("Bookings exported", path=str(path), rows=len(bookings))
        return Outcome.success(path)
