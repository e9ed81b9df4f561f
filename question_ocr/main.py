"""
Question OCR - command handler
Reads one JSON command per stdin line and writes JSON events to stdout
"""

import base64
import binascii
import json
import logging
import sys
import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any, Dict, Optional

from .config import PipelineConfig, detect_hardware_capabilities, get_default_config
from .errors import PipelineError

logger = logging.getLogger(__name__)


class IPCHandler:
    """
    Handles JSON-based IPC communication via stdin/stdout.

    Command format:
        {"command": "extract", "request_id": "r1",
         "options": {"image_base64": "...", "subject": "math", "expectedQuestionCount": 3}}

    Emits:
        {"type": "result", "request_id": "r1", "data": {...PipelineResult...}}
        {"type": "error", "request_id": "r1", "data": {"kind": "...", "message": "..."}}
    """

    def __init__(self, config: Optional[PipelineConfig] = None, background_extract: bool = False):
        self.running = True
        self._local = threading.local()
        self.config = config
        self.background_extract = background_extract
        self._pipeline = None
        self._monitor = None
        self._pipeline_lock = threading.Lock()
        self._write_lock = threading.Lock()
        self._active: Dict[Optional[str], threading.Event] = {}
        self._active_lock = threading.Lock()
        self._executor: Optional[ThreadPoolExecutor] = None

    @property
    def pipeline(self):
        """Pipeline built on first use so the handler starts without touching Tesseract"""
        with self._pipeline_lock:
            if self._pipeline is None:
                from .pipeline import ExtractionPipeline
                from .telemetry import PerformanceMonitor

                config = self.config or get_default_config()
                self._monitor = PerformanceMonitor.from_config(config)
                self._pipeline = ExtractionPipeline(config, telemetry=self._monitor)
            return self._pipeline

    @property
    def current_request_id(self) -> Optional[str]:
        """Request id of the command being handled on this thread; None on extract workers"""
        return getattr(self._local, "request_id", None)

    @current_request_id.setter
    def current_request_id(self, request_id: Optional[str]):
        self._local.request_id = request_id

    def send_event(self, event_type: str, data: Any, request_id: str = None):
        """Send an event to the caller via stdout"""
        event = {
            "type": event_type,
            "data": data
        }
        if request_id:
            event["request_id"] = request_id
            logger.debug(f"Sending {event_type} event with request_id: {request_id}")
        else:
            logger.debug(f"Sending {event_type} event without request_id")
        with self._write_lock:
            print(json.dumps(event), flush=True)

    def send_result(self, result: Any, request_id: str = None):
        """Send processing result"""
        self.send_event("result", result, request_id=request_id or self.current_request_id)

    def send_error(self, error_message: str, kind: str = "error", request_id: str = None):
        """Send error message"""
        self.send_event(
            "error",
            {"kind": kind, "message": error_message},
            request_id=request_id or self.current_request_id,
        )

    def handle_command(self, command: Dict[str, Any]):
        """Process incoming command"""
        cmd_type = command.get("command")
        self.current_request_id = command.get("request_id")
        logger.debug(f"Handling command '{cmd_type}' with request_id: {self.current_request_id}")

        if cmd_type == "extract":
            if self.background_extract:
                self._submit_extract(command)
            else:
                self.handle_extract(command)
        elif cmd_type == "cache_stats":
            self.handle_cache_stats()
        elif cmd_type == "health":
            self.handle_health()
        elif cmd_type == "cancel":
            self.handle_cancel(command)
        elif cmd_type == "shutdown":
            self.handle_shutdown()
        else:
            self.send_error(f"Unknown command: {cmd_type}")

    def _submit_extract(self, command: Dict[str, Any]):
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="ipc-extract")
        self._executor.submit(self.handle_extract, command)

    def _read_image(self, options: Dict[str, Any]) -> bytes:
        encoded = options.get("image_base64")
        if encoded:
            try:
                return base64.b64decode(encoded, validate=True)
            except (binascii.Error, ValueError) as e:
                raise ValueError(f"image_base64 is not valid base64: {e}") from e

        file_path = options.get("file_path")
        if file_path:
            return Path(file_path).read_bytes()

        raise ValueError("Missing required parameter: image_base64 or file_path")

    def handle_extract(self, command: Dict[str, Any]):
        """Run the extraction pipeline on one image"""
        request_id = command.get("request_id")
        options = command.get("options", {})

        try:
            image_bytes = self._read_image(options)
        except (ValueError, OSError) as e:
            logger.error(f"Cannot read image for request {request_id}: {e}")
            self.send_error(str(e), kind="invalid_request", request_id=request_id)
            return

        cancel_event = threading.Event()
        with self._active_lock:
            self._active[request_id] = cancel_event

        logger.info(f"Extracting questions for request {request_id} ({len(image_bytes)} bytes)")
        try:
            result = self.pipeline.extract(
                image_bytes,
                {
                    "subject": options.get("subject"),
                    "expectedQuestionCount": options.get(
                        "expectedQuestionCount", options.get("expected_question_count")
                    ),
                    "requestId": request_id,
                },
                cancel_event=cancel_event,
            )
            self.send_result(
                result.to_dict(include_attempts=bool(options.get("include_attempts"))),
                request_id=request_id,
            )
        except PipelineError as e:
            self.send_error(e.message, kind=e.kind, request_id=request_id)
        except Exception as e:
            error_msg = f"Extraction failed: {str(e)}"
            logger.error(error_msg, exc_info=True)
            self.send_error(error_msg, request_id=request_id)
        finally:
            with self._active_lock:
                self._active.pop(request_id, None)

    def handle_cache_stats(self):
        """Report result cache statistics"""
        self.send_result(self.pipeline.cache.get_stats())

    def handle_health(self):
        """Report pool health, cache statistics, run summary and hardware"""
        try:
            health = self.pipeline.health_check()
            health["performance"] = self._monitor.get_summary()
            health["hardware"] = detect_hardware_capabilities()
            self.send_result(health)
        except Exception as e:
            error_msg = f"Health check failed: {str(e)}"
            logger.error(error_msg, exc_info=True)
            self.send_error(error_msg)

    def handle_cancel(self, command: Dict[str, Any]):
        """Cancel one running extraction, or all of them when no target is given"""
        target = command.get("options", {}).get("target_request_id")
        with self._active_lock:
            if target is not None:
                events = [self._active[target]] if target in self._active else []
            else:
                events = list(self._active.values())
        for event in events:
            event.set()

        logger.info(f"Cancellation requested (target={target or 'all'}, matched={len(events)})")
        self.send_result({"cancelled": len(events), "target_request_id": target})

    def handle_shutdown(self):
        """Stop reading commands and release the recognizers"""
        self.running = False
        if self._executor is not None:
            self._executor.shutdown(wait=True)
        if self._pipeline is not None:
            self._pipeline.cleanup()
        self.send_result({"status": "shutdown"})

    def run(self):
        """Main event loop - read commands from stdin"""
        logger.info("Question OCR backend started, waiting for commands...")

        try:
            for line in sys.stdin:
                if not self.running:
                    break

                line = line.strip()
                if not line:
                    continue

                try:
                    command = json.loads(line)
                    self.handle_command(command)
                except json.JSONDecodeError as e:
                    logger.error(f"Invalid JSON: {e}")
                    self.send_error(f"Invalid JSON: {str(e)}")
                except Exception as e:
                    logger.error(f"Command handling error: {e}", exc_info=True)
                    self.send_error(str(e))

        except KeyboardInterrupt:
            logger.info("Interrupted by user")
        finally:
            if self._executor is not None:
                self._executor.shutdown(wait=True)
            if self._pipeline is not None:
                self._pipeline.cleanup()
            logger.info("Question OCR backend shutting down")


def main():
    # stdout carries the JSON protocol, so logs go to stderr
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        stream=sys.stderr
    )
    handler = IPCHandler(background_extract=True)
    handler.run()


if __name__ == "__main__":
    main()
