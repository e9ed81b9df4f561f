"""
Unit Tests for the stdin/stdout command handler
"""

import base64
import json
import threading

import pytest

from question_ocr.cache import ResultCache
from question_ocr.main import IPCHandler
from question_ocr.pipeline import ExtractionPipeline
from question_ocr.telemetry import PerformanceMonitor

from conftest import MCQ_TEXT, FakeEngineFactory, create_synthetic_page, encode_image, fixed_text, make_config


@pytest.fixture
def handler():
    config = make_config()
    monitor = PerformanceMonitor.from_config(config)
    handler = IPCHandler(config)
    handler._monitor = monitor
    handler._pipeline = ExtractionPipeline(
        config,
        engine_factory=FakeEngineFactory(fixed_text(MCQ_TEXT, 0.9)),
        cache=ResultCache.from_config(config),
        telemetry=monitor,
    )
    yield handler
    handler._pipeline.cleanup()


@pytest.fixture
def image_b64():
    png = encode_image(create_synthetic_page(width=400, height=300), "PNG")
    return base64.b64encode(png).decode("ascii")


def read_events(capsys):
    out = capsys.readouterr().out
    return [json.loads(line) for line in out.splitlines() if line.strip()]


class TestExtractCommand:
    """Test the extract command"""

    def test_extract_base64(self, handler, image_b64, capsys):
        handler.handle_command({
            "command": "extract",
            "request_id": "r1",
            "options": {"image_base64": image_b64, "subject": "math"},
        })

        events = read_events(capsys)
        assert len(events) == 1
        event = events[0]
        assert event["type"] == "result"
        assert event["request_id"] == "r1"
        assert event["data"]["questions"][0]["type"] == "MCQ"
        assert event["data"]["processingInfo"]["requestId"] == "r1"
        assert "attempts" not in event["data"]

    def test_extract_from_file_with_attempts(self, handler, image_b64, tmp_path, capsys):
        path = tmp_path / "page.png"
        path.write_bytes(base64.b64decode(image_b64))

        handler.handle_command({
            "command": "extract",
            "request_id": "r2",
            "options": {"file_path": str(path), "include_attempts": True},
        })

        event = read_events(capsys)[0]
        assert event["type"] == "result"
        assert len(event["data"]["attempts"]) >= 1

    def test_missing_image(self, handler, capsys):
        handler.handle_command({"command": "extract", "request_id": "r3", "options": {}})

        event = read_events(capsys)[0]
        assert event["type"] == "error"
        assert event["data"]["kind"] == "invalid_request"
        assert event["request_id"] == "r3"

    def test_bad_base64(self, handler, capsys):
        handler.handle_command({
            "command": "extract",
            "request_id": "r4",
            "options": {"image_base64": "not base64!!"},
        })

        assert read_events(capsys)[0]["data"]["kind"] == "invalid_request"

    def test_undecodable_image(self, handler, capsys):
        handler.handle_command({
            "command": "extract",
            "request_id": "r5",
            "options": {"image_base64": base64.b64encode(b"plain text").decode("ascii")},
        })

        event = read_events(capsys)[0]
        assert event["type"] == "error"
        assert event["data"]["kind"] == "invalid_image"

    def test_worker_thread_error_keeps_own_request_id(self, handler, capsys):
        # A later command on the reading thread must not relabel a background error
        handler.current_request_id = "later-command"
        worker = threading.Thread(target=handler.handle_extract, args=({"command": "extract", "options": {}},))
        worker.start()
        worker.join(timeout=5)

        event = read_events(capsys)[0]
        assert event["type"] == "error"
        assert "request_id" not in event
        assert handler.current_request_id == "later-command"


class TestOtherCommands:
    """Test housekeeping commands"""

    def test_unknown_command(self, handler, capsys):
        handler.handle_command({"command": "dance", "request_id": "x"})

        event = read_events(capsys)[0]
        assert event["type"] == "error"
        assert event["data"]["message"] == "Unknown command: dance"

    def test_cache_stats(self, handler, image_b64, capsys):
        command = {"command": "extract", "request_id": "r1", "options": {"image_base64": image_b64}}
        handler.handle_command(command)
        handler.handle_command(command)
        capsys.readouterr()

        handler.handle_command({"command": "cache_stats"})

        stats = read_events(capsys)[0]["data"]
        assert stats["hits"] == 1
        assert stats["entries"] == 1

    def test_health(self, handler, capsys):
        handler.handle_command({"command": "health", "request_id": "h"})

        data = read_events(capsys)[0]["data"]
        assert set(data) >= {"initialized", "pool", "cache", "performance", "hardware"}
        assert data["performance"]["total_runs"] == 0

    def test_cancel_targets_active_request(self, handler, capsys):
        event = threading.Event()
        handler._active["busy"] = event

        handler.handle_command({"command": "cancel", "options": {"target_request_id": "busy"}})

        assert event.is_set()
        assert read_events(capsys)[0]["data"] == {"cancelled": 1, "target_request_id": "busy"}

    def test_cancel_unknown_request(self, handler, capsys):
        handler.handle_command({"command": "cancel", "options": {"target_request_id": "gone"}})

        assert read_events(capsys)[0]["data"]["cancelled"] == 0

    def test_shutdown(self, handler, capsys):
        handler.handle_command({"command": "shutdown"})

        assert not handler.running
        assert read_events(capsys)[0]["data"] == {"status": "shutdown"}


def test_run_loop_handles_bad_json(handler, monkeypatch, capsys):
    import io
    import sys

    monkeypatch.setattr(sys, "stdin", io.StringIO('not json\n\n{"command": "shutdown"}\n{"command": "health"}\n'))

    handler.run()

    events = read_events(capsys)
    assert events[0]["type"] == "error"
    assert events[0]["data"]["message"].startswith("Invalid JSON")
    assert events[1]["data"] == {"status": "shutdown"}
    assert len(events) == 2
