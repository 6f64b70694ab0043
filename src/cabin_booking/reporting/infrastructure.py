"""
Запись файлов выгрузки.
"""

from pathlib import Path


class CsvFileWriter:
    """Пишет CSV-файлы в указанный каталог."""

    def __init__(self, directory: str):
        self._directory = Path(directory)

    def write(self, filename: str, content: str) -> Path:
        # Создаем каталог, если он не существует
        self._directory.mkdir(parents=True, exist_ok=True)
        path = self._directory / filename
        with open(path, "w", encoding="utf-8", newline="") as f:
            f.write(content)
        return path
