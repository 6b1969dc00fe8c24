"""Shared fixtures for webhook-tui tests."""

import os
import tempfile

# Keep the config, database and log files of the test run out of ~/.webhook-tui.
os.environ.setdefault("WEBHOOK_TUI_HOME", tempfile.mkdtemp(prefix="webhook-tui-tests-"))

from datetime import datetime, timezone  # noqa: E402

import pytest  # noqa: E402

from webhook_tui.log import Logger  # noqa: E402
from webhook_tui.models import WebhookRecord  # noqa: E402
from webhook_tui.store import RecordStore  # noqa: E402


@pytest.fixture
def logger(tmp_path):
    return Logger(tmp_path / "logs" / "test.log", "test")


@pytest.fixture
def store(tmp_path, logger):
    s = RecordStore(tmp_path / "data" / "webhooks.db", logger=logger).open()
    yield s
    s.close()


@pytest.fixture
def make_record():
    def _make(record_id=1, method="POST", path="/webhook", body='{"event":"test"}', headers=None, **kwargs):
        from webhook_tui.models import parse_body_json

        return WebhookRecord(
            id=record_id,
            timestamp=kwargs.pop("timestamp", datetime(2024, 5, 1, 12, 30, 15, 123456, tzinfo=timezone.utc)),
            method=method,
            path=path,
            headers=headers if headers is not None else {"Content-Type": "application/json"},
            body=body,
            body_json=kwargs.pop("body_json", parse_body_json(body)),
        )

    return _make
