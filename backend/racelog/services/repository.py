"""
Run Repository - manages loading and caching of telemetry runs.

Indexes log files of every supported format in a folder, plus runs added
from uploaded buffers. Parsed runs are cached in memory.
"""

import logging
import os
from pathlib import Path
from typing import Optional, Union

from racelog.models.telemetry import RunSummary, TelemetryRun
from racelog.services.canonicalizer import generate_run_id
from racelog.services.decoding import DecodeError
from racelog.services.dispatcher import decode_buffer, parse_log_file


logger = logging.getLogger(__name__)


LOG_EXTENSIONS = (".ubx", ".vbo", ".csv", ".nmea", ".txt", ".log")
DEFAULT_DATA_FOLDER = Path(os.getenv("RACELOG_DATA_FOLDER", "./data/runs"))


class RunRepository:
    """
    Repository for managing telemetry runs.

    File-backed runs are indexed by id and decoded lazily; uploaded runs are
    decoded once and live only in the cache.
    """

    def __init__(self, data_folder: Optional[Path] = None):
        """
        Initialize the repository.

        Args:
            data_folder: Folder containing log files. If None, must be set later.
        """
        self._data_folder: Optional[Path] = data_folder
        self._cache: dict[str, TelemetryRun] = {}
        self._index: dict[str, Path] = {}  # id -> filepath mapping
        self._uploads: set[str] = set()

        if data_folder is not None:
            self.scan_folder(data_folder)

    @property
    def data_folder(self) -> Optional[Path]:
        return self._data_folder

    @property
    def run_count(self) -> int:
        return len(self._index) + len(self._uploads)

    def set_data_folder(self, folder: Path) -> int:
        """
        Set the data folder and scan it for log files.

        Returns:
            Number of log files found
        """
        self._data_folder = folder
        self._index.clear()
        self._cache = {k: v for k, v in self._cache.items() if k in self._uploads}
        return self.scan_folder(folder)

    def scan_folder(self, folder: Path) -> int:
        """
        Scan a folder for log files and add them to the index.

        Returns:
            Number of log files found
        """
        if not folder.exists():
            logger.warning("Data folder does not exist: %s", folder)
            return 0

        count = 0
        for path in sorted(folder.iterdir()):
            if path.is_file() and path.suffix.lower() in LOG_EXTENSIONS:
                run_id = self._filepath_to_id(path)
                self._index[run_id] = path
                count += 1
                logger.debug("Indexed run: %s -> %s", run_id, path.name)

        logger.info("Scanned %d log files in %s", count, folder)
        return count

    def rescan(self) -> int:
        """Rebuild the file index from the current data folder."""
        if self._data_folder is None:
            return 0
        return self.set_data_folder(self._data_folder)

    def list_runs(self) -> list[RunSummary]:
        """
        List all available runs, newest first.

        Files that fail to decode are logged and left out.
        """
        summaries = []

        for run_id in list(self._index) + sorted(self._uploads):
            run = self.get_run(run_id)
            if run is not None:
                summaries.append(RunSummary.from_run(run))

        summaries.sort(
            key=lambda s: (s.recorded_at or "", s.name),
            reverse=True,
        )
        return summaries

    def get_run(self, run_id: str) -> Optional[TelemetryRun]:
        """Get a run by ID, decoding and caching it on first access."""
        if run_id in self._cache:
            return self._cache[run_id]

        if run_id not in self._index:
            return None

        filepath = self._index[run_id]
        try:
            return self._load_run(run_id, filepath)
        except (DecodeError, ValueError, OSError) as e:
            logger.error("Failed to load run %s (%s): %s", run_id, filepath.name, e)
            return None

    def get_run_by_name(self, name: str) -> Optional[TelemetryRun]:
        """Get a run by file stem or upload name."""
        for run_id, filepath in self._index.items():
            if filepath.stem == name:
                return self.get_run(run_id)
        for run_id in self._uploads:
            run = self._cache.get(run_id)
            if run is not None and run.metadata.name == name:
                return run
        return None

    def add_buffer(
        self,
        name: str,
        data: Union[bytes, str],
        format_name: Optional[str] = None,
    ) -> TelemetryRun:
        """
        Decode an uploaded buffer and keep the run in the cache.

        Raises:
            DecodeError: the buffer could not be decoded
        """
        run = decode_buffer(data, name=name, format_name=format_name)
        self._cache[run.metadata.id] = run
        self._uploads.add(run.metadata.id)
        logger.info("Added uploaded run %s (%s)", run.metadata.id, name)
        return run

    def clear_cache(self) -> None:
        """Drop decoded file-backed runs; uploads are kept."""
        self._cache = {k: v for k, v in self._cache.items() if k in self._uploads}
        logger.info("Run cache cleared")

    def _load_run(self, run_id: str, filepath: Path) -> TelemetryRun:
        run = parse_log_file(filepath)
        self._cache[run_id] = run
        logger.debug("Loaded and cached run: %s", run_id)
        return run

    def _filepath_to_id(self, filepath: Path) -> str:
        # Same id the decoder pipeline assigns to file-backed runs
        return generate_run_id(filepath.stem, source_file=filepath)
