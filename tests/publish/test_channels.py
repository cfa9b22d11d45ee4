from __future__ import annotations

import pytest

from ingestion.settings import get_settings, reset_settings_cache
from publish.channels import DeliveryError, LogChannel, TelegramChannel, build_channel


def test_build_channel_without_token_logs(app_env):
    assert isinstance(build_channel(app_env), LogChannel)


def test_build_channel_with_token(monkeypatch, app_env):
    monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "123:abc")
    reset_settings_cache()

    assert isinstance(build_channel(get_settings()), TelegramChannel)


def test_log_channel_emits_event(caplog):
    with caplog.at_level("INFO", logger="publish.channels"):
        LogChannel().send("42", "hello")

    assert [record.getMessage() for record in caplog.records] == ["notify.channel.log"]

