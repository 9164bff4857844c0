from __future__ import annotations

import logging

from logging_config import ContextualFormatter, build_logging_config


def _record(**extra) -> logging.LogRecord:
    record = logging.LogRecord("gateway", logging.INFO, __file__, 1, "Batch sent", None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_formatter_appends_known_extras_in_order() -> None:
    formatter = ContextualFormatter(fmt="%(message)s")

    line = formatter.format(_record(points=3, database="metrics", unrelated="x"))

    assert line == "Batch sent | database=metrics points=3"


def test_formatter_quotes_values_with_spaces() -> None:
    formatter = ContextualFormatter(fmt="%(message)s", extra_keys=["reason"])

    line = formatter.format(_record(reason='status 500: "boom"'))

    assert line == 'Batch sent | reason="status 500: \\"boom\\""'


def test_formatter_skips_missing_and_none_values() -> None:
    formatter = ContextualFormatter(fmt="%(message)s")

    assert formatter.format(_record(status_code=None)) == "Batch sent"


def test_file_handler_added_only_with_path(tmp_path) -> None:
    plain = build_logging_config("INFO")
    with_file = build_logging_config("DEBUG", str(tmp_path / "gateway.log"))

    assert list(plain["handlers"]) == ["console"]
    assert list(with_file["handlers"]) == ["console", "file"]
    assert with_file["handlers"]["file"]["filename"] == str(tmp_path / "gateway.log")
    assert with_file["root"] == {"handlers": ["console", "file"], "level": "DEBUG"}
