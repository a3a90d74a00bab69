from __future__ import annotations

import json
import logging

from modqueue.obs import logging as obs_logging


def _record(**extra) -> logging.LogRecord:
    record = logging.LogRecord("modqueue.test", logging.INFO, __file__, 1, "report processed", None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_formatter_emits_bound_context_and_redacts() -> None:
    tokens = obs_logging.bind_context(mod_id="mod1", report_id="r1")
    try:
        payload = json.loads(obs_logging.JSONLogFormatter().format(_record(suspect_id="bob", suspect_ip="10.0.0.1")))
    finally:
        obs_logging.reset_context(tokens)

    assert payload["msg"] == "report processed"
    assert payload["level"] == "info"
    assert payload["mod_id"] == "mod1"
    assert payload["report_id"] == "r1"
    assert payload["suspect_id"] == "bob"
    assert payload["suspect_ip"] == "[redacted]"


def test_context_is_reset() -> None:
    tokens = obs_logging.bind_context(mod_id="mod1")
    obs_logging.reset_context(tokens)

    payload = json.loads(obs_logging.JSONLogFormatter().format(_record()))

    assert "mod_id" not in payload


def test_long_values_are_truncated() -> None:
    payload = json.loads(obs_logging.JSONLogFormatter().format(_record(text="x" * 1000, ids=list(range(20)))))

    assert len(payload["text"]) == 257
    assert len(payload["ids"]) == 11
