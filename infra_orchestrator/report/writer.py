"""Persists session reports under the reports directory."""

import logging
from pathlib import Path
from typing import Dict, Iterable, Optional

from ..exceptions import ReportWriteError
from ..state import SessionResult, utc_now
from .generator import ReportGenerator

logger = logging.getLogger(__name__)


class ReportWriter:
    """
    Writes `session-<timestamp>.json` plus the requested derived formats.

    Called once per session, after the barrier, by the thread that owns the
    session. JSON is always written; html/csv share its stem.
    """

    def __init__(self, reports_dir: Path, generator: Optional[ReportGenerator] = None):
        self.reports_dir = reports_dir
        self.generator = generator or ReportGenerator()

    def stem(self, session: SessionResult) -> str:
        return f"session-{session.session_id}"

    def write(self, session: SessionResult, formats: Iterable[str] = ('json',),
              generated_at: Optional[str] = None) -> Dict[str, Path]:
        """
        Write the report files.

        Returns:
            Mapping of format to written path

        Raises:
            ReportWriteError: If any file cannot be written; the JSON report
                is logged to the console first so the results are not lost
        """
        generated_at = generated_at or utc_now()
        wanted = ['json'] + [fmt for fmt in formats if fmt != 'json']
        rendered = {fmt: self.generator.render(session, fmt, generated_at) for fmt in dict.fromkeys(wanted)}

        written: Dict[str, Path] = {}
        for fmt, content in rendered.items():
            path = self.reports_dir / f"{self.stem(session)}.{fmt}"
            try:
                self._write_atomic(path, content)
            except OSError as e:
                logger.error(f"Failed to write report {path}: {e}")
                logger.error(f"Report contents follow:\n{rendered['json']}")
                raise ReportWriteError(f"Failed to write report {path}: {e}", path=str(path))
            written[fmt] = path
            logger.info(f"Report written: {path}")

        return written

    @staticmethod
    def _write_atomic(path: Path, content: str) -> None:
        """Write atomically (temp file + rename)."""
        path.parent.mkdir(parents=True, exist_ok=True)
        temp_file = path.with_suffix(path.suffix + '.tmp')
        try:
            with open(temp_file, 'w', encoding='utf-8') as f:
                f.write(content)
            temp_file.replace(path)
        finally:
            if temp_file.exists():
                temp_file.unlink()
