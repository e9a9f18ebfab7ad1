import logging
import os
import tempfile
import unittest
from logging.handlers import RotatingFileHandler
from unittest import mock

from receptionist.config.logging_config import LOG_FILE_NAME, configure_logging


class TestLoggingConfig(unittest.TestCase):
    def setUp(self):
        self.log_dir = tempfile.TemporaryDirectory()

    def tearDown(self):
        # Release the file handler before the directory goes away
        configure_logging("INFO", log_dir=None)
        self.log_dir.cleanup()

    def test_configure_logging(self):
        logger = configure_logging("INFO", log_dir=self.log_dir.name)
        self.assertIsInstance(logger, logging.Logger)
        self.assertEqual(logger.name, "receptionist")
        self.assertEqual(logger.level, logging.INFO)
        self.assertFalse(logger.propagate)

        console, file_handler = logger.handlers
        self.assertIsInstance(console, logging.StreamHandler)
        self.assertEqual(console.formatter._fmt,
                         "%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        self.assertIsInstance(file_handler, RotatingFileHandler)
        self.assertEqual(file_handler.baseFilename,
                         os.path.join(os.path.abspath(self.log_dir.name), LOG_FILE_NAME))

    def test_console_only_without_log_dir(self):
        logger = configure_logging("INFO", log_dir=None)
        self.assertEqual(len(logger.handlers), 1)
        self.assertNotIsInstance(logger.handlers[0], RotatingFileHandler)

    def test_log_dir_from_environment(self):
        nested = os.path.join(self.log_dir.name, "engine")
        with mock.patch.dict(os.environ, {"LOG_DIR": nested}):
            logger = configure_logging("INFO")
        self.assertTrue(os.path.isfile(os.path.join(nested, LOG_FILE_NAME)))
        self.assertEqual(len(logger.handlers), 2)

    def test_level_override(self):
        logger = configure_logging("debug", log_dir=None)
        self.assertEqual(logger.level, logging.DEBUG)

    def test_unknown_level_falls_back_to_info(self):
        logger = configure_logging("chatty", log_dir=None)
        self.assertEqual(logger.level, logging.INFO)

    def test_reconfiguring_does_not_duplicate_handlers(self):
        first = len(configure_logging("INFO", log_dir=self.log_dir.name).handlers)
        second = len(configure_logging("INFO", log_dir=self.log_dir.name).handlers)
        self.assertEqual(first, second)

    def test_client_libraries_are_quieted(self):
        configure_logging("DEBUG", log_dir=None)
        self.assertEqual(logging.getLogger("httpx").level, logging.WARNING)
        self.assertEqual(logging.getLogger("websockets").level, logging.WARNING)


if __name__ == "__main__":
    unittest.main()
