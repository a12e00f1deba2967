"""
Tests for output capture: truncation and provisioner output parsing.
"""

import json

from infra_orchestrator.exec.output_capture import CaptureMode, OutputCapture


class TestTextCapture:

    def test_small_output_kept_whole(self):
        result = OutputCapture().capture("hello\n", "", CaptureMode.TEXT)

        assert result.output == "hello\n"
        assert result.truncated is False
        assert result.outputs is None

    def test_large_output_keeps_the_tail(self):
        text = "x" * 10_000 + "FINAL ERROR\n"
        result = OutputCapture().capture(text, "", CaptureMode.TEXT)

        assert result.truncated is True
        assert len(result.output.encode('utf-8')) <= OutputCapture.TEXT_LIMIT_BYTES
        assert result.output.endswith("FINAL ERROR\n")

    def test_stderr_appended(self):
        result = OutputCapture().capture("out\n", "err\n", CaptureMode.TEXT)
        assert result.output == "out\nerr\n"


class TestOutputParsing:

    def test_output_json_document_flattened(self):
        stdout = json.dumps({
            "public_instance_ips": {"sensitive": False, "type": ["list", "string"], "value": ["10.0.0.1", "10.0.0.2"]},
            "vpc_id": {"sensitive": False, "type": "string", "value": "vpc-123"},
        })
        result = OutputCapture().capture(stdout, "", CaptureMode.JSON)

        assert result.ok
        assert result.outputs == {
            "public_instance_ips": ["10.0.0.1", "10.0.0.2"],
            "vpc_id": "vpc-123",
        }

    def test_machine_readable_stream_outputs_message(self):
        lines = [
            json.dumps({"type": "version", "terraform": "1.6.0"}),
            json.dumps({"type": "apply_complete", "hook": {}}),
            json.dumps({"type": "outputs", "outputs": {"db_endpoint": {"value": "db.internal:5432"}}}),
        ]
        result = OutputCapture().capture("\n".join(lines), "", CaptureMode.JSON)

        assert result.ok
        assert result.outputs == {"db_endpoint": "db.internal:5432"}

    def test_empty_stdout_means_no_outputs(self):
        result = OutputCapture().capture("", "", CaptureMode.JSON)

        assert result.ok
        assert result.outputs == {}

    def test_unparseable_output_is_an_error(self):
        result = OutputCapture().capture("not json at all", "", CaptureMode.JSON)

        assert not result.ok
        assert result.error['type'] == 'json_parse_error'

    def test_non_object_json_is_an_error(self):
        result = OutputCapture().capture("[1, 2, 3]", "", CaptureMode.JSON)

        assert not result.ok
        assert result.outputs is None

    def test_overflow(self):
        capture = OutputCapture()
        capture.JSON_BUFFER_LIMIT = 10
        outputs, error = capture.parse_outputs('{"a": {"value": "0123456789"}}')

        assert outputs is None
        assert error['type'] == 'json_overflow'
