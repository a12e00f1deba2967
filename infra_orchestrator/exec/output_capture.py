"""
Output capture module for step outputs.

Two modes:
- text: captured output kept for diagnostics, truncated to 8 KiB in the report
  (the full stream is always in the step's log file)
- json: stdout additionally parsed as provisioner outputs, either a whole
  `terraform output -json` document or the `outputs` message of a
  machine-readable `-json` UI stream
"""

import json
from enum import Enum
from typing import Any, Dict, Optional, Tuple
from dataclasses import dataclass


class CaptureMode(str, Enum):
    """Output capture modes."""
    TEXT = "text"
    JSON = "json"


@dataclass
class CaptureResult:
    """Result of output capture processing."""
    mode: CaptureMode
    output: str = ""
    truncated: bool = False
    outputs: Optional[Dict[str, Any]] = None
    error: Optional[Dict[str, Any]] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class OutputCapture:
    """Truncates captured text and extracts provisioner outputs."""

    TEXT_LIMIT_BYTES = 8 * 1024  # 8 KiB kept in the report
    JSON_BUFFER_LIMIT = 1024 * 1024  # 1 MiB parsed at most

    def capture(self, stdout: str, stderr: str, mode: CaptureMode = CaptureMode.TEXT) -> CaptureResult:
        """
        Process captured output according to mode and limits.

        Args:
            stdout: Decoded stdout
            stderr: Decoded stderr
            mode: Capture mode (text/json)

        Returns:
            CaptureResult with truncated output and, in json mode, parsed outputs
        """
        combined = stdout + stderr if stderr else stdout
        output, truncated = self.truncate(combined)

        if mode == CaptureMode.TEXT:
            return CaptureResult(mode=mode, output=output, truncated=truncated)
        elif mode == CaptureMode.JSON:
            outputs, error = self.parse_outputs(stdout)
            return CaptureResult(
                mode=mode,
                output=output,
                truncated=truncated,
                outputs=outputs,
                error=error,
            )
        else:
            raise ValueError(f"Unknown capture mode: {mode}")

    def truncate(self, text: str) -> Tuple[str, bool]:
        """
        Keep the last 8 KiB of text.

        Provisioner errors are printed at the end of a run, so the tail is the
        part worth keeping.
        """
        encoded = text.encode('utf-8')
        if len(encoded) <= self.TEXT_LIMIT_BYTES:
            return text, False

        tail = encoded[-self.TEXT_LIMIT_BYTES:]
        # Drop a split multi-byte character at the cut
        return tail.decode('utf-8', errors='ignore'), True

    def parse_outputs(self, stdout: str) -> Tuple[Optional[Dict[str, Any]], Optional[Dict[str, Any]]]:
        """
        Parse provisioner outputs from stdout.

        Returns:
            (outputs, error): outputs flattened to {name: value}, or an error dict
        """
        if len(stdout.encode('utf-8')) > self.JSON_BUFFER_LIMIT:
            return None, {
                "type": "json_overflow",
                "message": f"Output buffer exceeds {self.JSON_BUFFER_LIMIT} bytes",
                "context": {"limit": self.JSON_BUFFER_LIMIT},
            }

        text = stdout.strip()
        if not text:
            return {}, None

        try:
            document = json.loads(text)
        except ValueError:
            document = self._find_outputs_message(text)
            if document is None:
                return None, {
                    "type": "json_parse_error",
                    "message": "No machine-readable outputs found in provisioner output",
                    "context": {},
                }

        if not isinstance(document, dict):
            return None, {
                "type": "json_parse_error",
                "message": f"Outputs must be a JSON object, got {type(document).__name__}",
                "context": {},
            }

        return self._flatten(document), None

    def _find_outputs_message(self, text: str) -> Optional[Dict[str, Any]]:
        """Find the last `{"type": "outputs", "outputs": {...}}` line of a -json stream."""
        for line in reversed(text.splitlines()):
            line = line.strip()
            if not line.startswith('{'):
                continue
            try:
                message = json.loads(line)
            except ValueError:
                continue
            if isinstance(message, dict) and message.get('type') == 'outputs':
                outputs = message.get('outputs')
                if isinstance(outputs, dict):
                    return outputs
        return None

    @staticmethod
    def _flatten(document: Dict[str, Any]) -> Dict[str, Any]:
        """Unwrap `{name: {value, type, sensitive}}` into `{name: value}`."""
        flattened = {}
        for name, entry in document.items():
            if isinstance(entry, dict) and 'value' in entry:
                flattened[name] = entry['value']
            else:
                flattened[name] = entry
        return flattened
