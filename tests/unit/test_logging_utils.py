"""Unit tests for structured logging helpers."""

from __future__ import annotations

import logging
from unittest.mock import patch

from luks_bootstrap import logging_utils


class TestLogStructured:
    def test_plain_handler_gets_key_value_fields(self, caplog):
        logger = logging.getLogger("luks_bootstrap.test.plain")
        with patch.object(logging_utils, "JournalHandler", None), caplog.at_level(logging.INFO):
            logging_utils.log_structured(logger, "volume opened", {"LB_EVENT": "open", "MAPPER": "m"})

        assert caplog.records[-1].getMessage() == "volume opened LB_EVENT=open MAPPER=m"

    def test_no_fields(self, caplog):
        logger = logging.getLogger("luks_bootstrap.test.bare")
        with patch.object(logging_utils, "JournalHandler", None), caplog.at_level(logging.INFO):
            logging_utils.log_structured(logger, "hello", {})

        assert caplog.records[-1].getMessage() == "hello"

    def test_level_is_respected(self, caplog):
        logger = logging.getLogger("luks_bootstrap.test.level")
        with patch.object(logging_utils, "JournalHandler", None), caplog.at_level(logging.WARNING):
            logging_utils.log_structured(logger, "fallback", {"SOURCE": "software"}, level=logging.WARNING)

        assert caplog.records[-1].levelno == logging.WARNING


class TestSetupLogging:
    def test_stream_handler_without_journal(self):
        logger = logging.getLogger(logging_utils.LOGGER_NAME)
        saved = list(logger.handlers)
        logger.handlers = []
        try:
            with patch.object(logging_utils, "JournalHandler", None):
                result = logging_utils.setup_logging(logging.DEBUG)
            assert result is logger
            assert result.level == logging.DEBUG
            assert len(result.handlers) == 1
            assert isinstance(result.handlers[0], logging.StreamHandler)
        finally:
            logger.handlers = saved
