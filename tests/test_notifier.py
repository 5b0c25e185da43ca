import pytest
import requests
from unittest.mock import MagicMock, patch

from config import DeskPilotConfig
from exceptions import NotificationDispatchFailure
from notifier import ConsoleChannel, Notifier, SlackChannel


@pytest.fixture
def slack_config():
    config = DeskPilotConfig()
    config.notification.channels = ["console", "slack"]
    config.notification.slack_webhook_url = "https://hooks.slack.test/T000"
    return config


@pytest.fixture(autouse=True)
def no_retry_sleep(monkeypatch):
    monkeypatch.setattr("resilience.time.sleep", lambda seconds: None)


def test_console_channel_prints_target_and_message():
    console = MagicMock()
    channel = ConsoleChannel(DeskPilotConfig(), console=console)

    assert channel.send("Support Team", "Ticket #1 escalated")

    printed = console.print.call_args[0][0]
    assert "@Support Team" in printed
    assert "Ticket #1 escalated" in printed


def test_slack_channel_posts_to_webhook(slack_config):
    with patch("notifier.requests.post") as post:
        post.return_value = MagicMock(status_code=200)
        assert SlackChannel(slack_config).send("Support Team", "Ticket #1 escalated")

    url = post.call_args[0][0]
    assert url == "https://hooks.slack.test/T000"
    assert post.call_args[1]["json"]["text"] == "*Support Team*: Ticket #1 escalated"


def test_slack_error_status_raises(slack_config):
    with patch("notifier.requests.post", return_value=MagicMock(status_code=500)):
        with pytest.raises(NotificationDispatchFailure, match="500"):
            SlackChannel(slack_config).send("Support Team", "hello")


def test_slack_retries_then_raises(slack_config):
    with patch("notifier.requests.post", side_effect=requests.ConnectionError("refused")) as post:
        with pytest.raises(NotificationDispatchFailure, match="refused"):
            SlackChannel(slack_config).send("Support Team", "hello")
    assert post.call_count == 3


def test_slack_disabled_without_webhook():
    config = DeskPilotConfig()
    config.notification.channels = ["slack"]
    assert SlackChannel(config).send("Support Team", "hello") is False


def test_disabled_notifier_returns_none():
    config = DeskPilotConfig()
    config.notification.enabled = False
    channel = MagicMock(enabled=True)
    notifier = Notifier(config, channels=[channel])

    assert notifier.send("Support Team", "hello") is None
    channel.send.assert_not_called()
    notifier.close()


def test_send_delivers_in_background():
    channel = MagicMock(enabled=True)
    channel.name = "mock"
    channel.send.return_value = True
    notifier = Notifier(DeskPilotConfig(), channels=[channel])

    future = notifier.send("Support Team", "hello")

    assert future.result(timeout=5) == {"mock": True}
    channel.send.assert_called_once_with("Support Team", "hello")
    notifier.close()


def test_deliver_raises_when_every_channel_fails():
    failing = MagicMock(enabled=True)
    failing.name = "mock"
    failing.send.side_effect = NotificationDispatchFailure("down")
    notifier = Notifier(DeskPilotConfig(), channels=[failing])

    with pytest.raises(NotificationDispatchFailure, match="All notification channels failed"):
        notifier.deliver("Support Team", "hello")
    notifier.close()


def test_deliver_tolerates_partial_failure():
    ok = MagicMock(enabled=True)
    ok.name = "console"
    ok.send.return_value = True
    failing = MagicMock(enabled=True)
    failing.name = "slack"
    failing.send.side_effect = NotificationDispatchFailure("down")
    notifier = Notifier(DeskPilotConfig(), channels=[ok, failing])

    assert notifier.deliver("Support Team", "hello") == {"console": True, "slack": False}
    notifier.close()
