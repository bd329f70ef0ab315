from __future__ import annotations

import logging as py_logging
from pathlib import Path

import pytest

import dragon.logging as dragon_logging


def test_default_log_path_is_expanded() -> None:
    path = dragon_logging.default_log_path()

    assert path.is_absolute()
    assert path.name == "dragon.log"


def test_warning_alias_maps_to_warning_level() -> None:
    logger = dragon_logging.configure_logging("warning")

    assert logger.level == dragon_logging.LOG_LEVELS["WARN"]


def test_unknown_log_level_falls_back_to_info() -> None:
    logger = dragon_logging.configure_logging("not-a-level")

    assert logger.level == py_logging.INFO


@pytest.mark.parametrize(("verbosity", "expected"), [(0, "WARN"), (1, "INFO"), (2, "DEBUG"), (5, "DEBUG")])
def test_level_from_verbosity(verbosity: int, expected: str) -> None:
    assert dragon_logging.level_from_verbosity(verbosity) == expected


def test_configure_logging_resets_existing_handlers() -> None:
    logger = dragon_logging.configure_logging("INFO")
    assert len(logger.handlers) == 1

    logger = dragon_logging.configure_logging("INFO")

    assert len(logger.handlers) == 1
    assert logger.propagate is False


def test_configure_logging_adds_debug_file_handler(tmp_path: Path) -> None:
    log_file = tmp_path / "logs" / "dragon.log"

    logger = dragon_logging.configure_logging("ERROR", log_file=log_file)
    file_handlers = [
        handler for handler in logger.handlers if isinstance(handler, py_logging.FileHandler)
    ]

    assert len(file_handlers) == 1
    assert file_handlers[0].level == py_logging.DEBUG
    assert log_file.exists()


def test_configure_logging_ignores_file_handler_oserror(monkeypatch, tmp_path: Path) -> None:
    def raise_os_error(*args: object, **kwargs: object) -> py_logging.Handler:
        raise OSError("disk full")

    monkeypatch.setattr(dragon_logging.py_logging, "FileHandler", raise_os_error)

    logger = dragon_logging.configure_logging("INFO", log_file=tmp_path / "nope" / "dragon.log")

    assert len(logger.handlers) == 1
    assert type(logger.handlers[0]) is py_logging.StreamHandler
