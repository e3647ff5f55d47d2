import json
import logging
import os
import sys
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from portless.structured_logging import JSONFormatter, is_json_logging_enabled, setup_logging


class JSONFormatterTests(unittest.TestCase):
    def make_record(self, msg="hello %s", args=("world",), **extra):
        record = logging.LogRecord("portless.router", logging.INFO, "core.py", 42, msg, args, None)
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_basic_fields(self):
        entry = json.loads(JSONFormatter().format(self.make_record()))
        self.assertEqual(entry["level"], "INFO")
        self.assertEqual(entry["logger"], "portless.router")
        self.assertEqual(entry["message"], "hello world")
        self.assertEqual(entry["file"], "core.py:42")
        self.assertIn("timestamp", entry)

    def test_extra_fields(self):
        entry = json.loads(JSONFormatter().format(self.make_record(request_id="abc123", port=4001)))
        self.assertEqual(entry["request_id"], "abc123")
        self.assertEqual(entry["port"], 4001)
        self.assertNotIn("args", entry)

    def test_exception(self):
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            record = logging.LogRecord("x", logging.ERROR, "f.py", 1, "failed", (), exc_info=sys.exc_info())
        entry = json.loads(JSONFormatter().format(record))
        self.assertIn("RuntimeError: boom", entry["exception"])


class SetupLoggingTests(unittest.TestCase):
    def setUp(self):
        root = logging.getLogger()
        saved = (root.level, list(root.handlers))

        def restore():
            for handler in root.handlers:
                handler.close()
            root.handlers = saved[1]
            root.setLevel(saved[0])

        self.addCleanup(restore)
        env = patch.dict(os.environ, {}, clear=False)
        env.start()
        self.addCleanup(env.stop)
        for key in ("PORTLESS_LOG_FORMAT", "PORTLESS_LOG_LEVEL", "PORTLESS_LOG_FILE"):
            os.environ.pop(key, None)

    def test_json_toggle(self):
        self.assertFalse(is_json_logging_enabled())
        os.environ["PORTLESS_LOG_FORMAT"] = "JSON"
        self.assertTrue(is_json_logging_enabled())

    def test_level_from_env(self):
        os.environ["PORTLESS_LOG_LEVEL"] = "debug"
        setup_logging()
        self.assertEqual(logging.getLogger().level, logging.DEBUG)

    def test_json_file_output(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            log_file = Path(tmpdir) / "proxy.log"
            os.environ["PORTLESS_LOG_FORMAT"] = "json"
            setup_logging(level="INFO", log_file=str(log_file))
            logging.getLogger("portless.test").info("registered %s", "web")
            for handler in logging.getLogger().handlers:
                handler.flush()

            entry = json.loads(log_file.read_text().strip().splitlines()[-1])
            self.assertEqual(entry["message"], "registered web")
            self.assertEqual(entry["logger"], "portless.test")

            for handler in logging.getLogger().handlers:
                handler.close()
            logging.getLogger().handlers = []


if __name__ == "__main__":
    unittest.main()
