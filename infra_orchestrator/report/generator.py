"""
Session report rendering.

JSON is the canonical form, serialized from the typed result records with a
single encoder. HTML and CSV are rendered from the parsed JSON document, so
they can only show what the JSON contains.
"""

import csv
import io
import json
from pathlib import Path
from typing import Any, Dict, Optional

from jinja2 import Environment, FileSystemLoader

from ..state import SessionResult, utc_now

FORMATS = ('json', 'html', 'csv')
TEMPLATE_DIR = Path(__file__).parent / 'templates'

CSV_COLUMNS = [
    'target_id', 'pipeline_state', 'degraded', 'step_name', 'status',
    'exit_code', 'attempts', 'duration_sec', 'dry_run_substituted', 'timed_out', 'error_type',
]


def session_document(session: SessionResult, generated_at: str) -> Dict[str, Any]:
    """The report document: every field of the session, in JSON-native types."""
    document: Dict[str, Any] = {
        "session_id": session.session_id,
        "timestamp": session.timestamp,
        "generated_at": generated_at,
        "project": session.project,
        "environment": session.environment,
        "command": session.command,
        "dry_run": session.dry_run,
        "test_mode": session.test_mode,
        "cancelled": session.cancelled,
        "overall_status": session.overall_status.value,
        "pipelines": [p.to_dict() for p in session.pipelines],
        "summary": session.summary,
        "cost_comparison": session.cost_comparison,
    }
    if session.replication_config is not None:
        document["replication_config"] = session.replication_config
    if session.rto_measurement is not None:
        document["rto_measurement"] = session.rto_measurement
    if session.error is not None:
        document["error"] = session.error
    return document


class ReportGenerator:
    """Renders a session result as json, html or csv."""

    def __init__(self, template_dir: Optional[Path] = None):
        self.env = Environment(
            loader=FileSystemLoader(str(template_dir or TEMPLATE_DIR)),
            autoescape=True,
            keep_trailing_newline=True,
        )

    def render(self, session: SessionResult, fmt: str = 'json', generated_at: Optional[str] = None) -> str:
        """
        Render a report.

        Args:
            session: Merged session result
            fmt: One of json, html, csv
            generated_at: Report timestamp (default: now); fixing it makes
                rendering byte-for-byte reproducible

        Raises:
            ValueError: For an unknown format
        """
        if fmt not in FORMATS:
            raise ValueError(f"Unknown report format '{fmt}'. Supported: {list(FORMATS)}")

        canonical = self.render_json(session, generated_at or utc_now())
        if fmt == 'json':
            return canonical
        document = json.loads(canonical)
        if fmt == 'html':
            return self.render_html(document)
        return self.render_csv(document)

    @staticmethod
    def render_json(session: SessionResult, generated_at: str) -> str:
        return json.dumps(session_document(session, generated_at), sort_keys=True, indent=2) + "\n"

    def render_html(self, document: Dict[str, Any]) -> str:
        template = self.env.get_template('session.html')
        return template.render(report=document)

    @staticmethod
    def render_csv(document: Dict[str, Any]) -> str:
        """One row per step result."""
        buffer = io.StringIO()
        writer = csv.DictWriter(buffer, fieldnames=CSV_COLUMNS, lineterminator='\n')
        writer.writeheader()
        for pipeline in document['pipelines']:
            for result in pipeline['results']:
                writer.writerow({
                    'target_id': pipeline['target_id'],
                    'pipeline_state': pipeline['state'],
                    'degraded': pipeline['degraded'],
                    'step_name': result['step_name'],
                    'status': result['status'],
                    'exit_code': result.get('exit_code', ''),
                    'attempts': result.get('attempts', 0),
                    'duration_sec': result.get('duration_sec', 0.0),
                    'dry_run_substituted': result.get('dry_run_substituted', False),
                    'timed_out': result.get('timed_out', False),
                    'error_type': (result.get('error') or {}).get('type', ''),
                })
        return buffer.getvalue()
