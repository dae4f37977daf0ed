"""
Unit tests for logging setup.
"""
import sys
from pathlib import Path

import pytest
from loguru import logger

from todo_reminder.admin.store import filter_logs
from todo_reminder.logger import error_log_path, setup_logging


@pytest.fixture
def restore_logger():
    yield
    logger.remove()
    logger.add(sys.stderr)


class TestSetupLogging:
    def test_error_log_sits_next_to_main_log(self):
        assert error_log_path("logs/todo_reminder.log") == Path("logs/todo_reminder_error.log")

    def test_file_lines_are_filterable_by_level(self, tmp_path, restore_logger):
        """File sink lines keep the level column the admin log view filters on"""
        log_file = tmp_path / "logs" / "engine.log"
        setup_logging("DEBUG", log_file, console_level="ERROR")

        logger.info("reminder dispatched")
        logger.error("backend unreachable")
        logger.complete()

        lines = log_file.read_text(encoding="utf-8").splitlines()
        assert [line.split(" - ")[-1] for line in filter_logs(lines, ["ERROR"])] == ["backend unreachable"]
        assert "backend unreachable" in error_log_path(log_file).read_text(encoding="utf-8")
        assert "reminder dispatched" not in error_log_path(log_file).read_text(encoding="utf-8")
