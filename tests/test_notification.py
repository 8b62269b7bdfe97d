"""Tests for completion messages, dispatchers and the routing engine."""

from __future__ import annotations

import smtplib
from unittest.mock import MagicMock, patch

import pytest

from runregistry.core.errors import NotificationError
from runregistry.notification import (
    BaseDispatcher,
    EmailDispatcher,
    LogDispatcher,
    NotificationEngine,
    SchemeDispatcher,
    TemplateCompletionNotifier,
    split_destination,
)


class CollectingDispatcher(BaseDispatcher):
    def __init__(self, name: str, scheme: str, **kwargs):
        super().__init__(name, scheme, **kwargs)
        self.received: list[tuple[str | None, str]] = []

    def dispatch(self, run, destination, subject, body):
        self.received.append((destination, subject))


class BrokenDispatcher(BaseDispatcher):
    def dispatch(self, run, destination, subject, body):
        raise NotificationError("smtp down")


@pytest.fixture
def run(factory):
    run = factory.create("alice", "<w/>")
    run.id = "r1"
    return run


# =============================================================================
# Message construction
# =============================================================================


class TestTemplateCompletionNotifier:
    def test_default_subject(self, run):
        notifier = TemplateCompletionNotifier()
        assert notifier.make_subject("r1", run, 0) == "Workflow run r1 finished with exit code 0"

    def test_body_fields(self, run):
        notifier = TemplateCompletionNotifier(body_template="{owner} {status} {code}")
        assert notifier.make_body("r1", run, 2) == "alice Initializing 2"

    def test_unknown_field_left_in_place(self, run):
        notifier = TemplateCompletionNotifier(subject_template="{run_id} {nonsense}")
        assert notifier.make_subject("r1", run, 0) == "r1 {nonsense}"


# =============================================================================
# Routing
# =============================================================================


class TestSplitDestination:
    @pytest.mark.parametrize(
        "destination, expected",
        [
            ("mailto:alice@example.org", ("mailto", "alice@example.org")),
            ("MAILTO:alice@example.org", ("mailto", "alice@example.org")),
            ("alice@example.org", ("mailto", "alice@example.org")),
            ("log:ops", ("log", "ops")),
        ],
    )
    def test_split(self, destination, expected):
        assert split_destination(destination) == expected


class TestNotificationEngine:
    def test_routes_by_scheme(self, run):
        engine = NotificationEngine()
        mail = CollectingDispatcher("email", "mailto")
        engine.register(mail)

        engine.dispatch(run, "alice@example.org", "subject", "body")

        assert mail.received == [("alice@example.org", "subject")]
        assert engine.schemes() == ["mailto"]
        assert isinstance(mail, SchemeDispatcher)

    def test_unknown_scheme(self, run):
        engine = NotificationEngine()
        with pytest.raises(NotificationError):
            engine.dispatch(run, "sms:+15550100", "s", "b")

    def test_disabled_dispatcher(self, run):
        engine = NotificationEngine()
        engine.register(CollectingDispatcher("email", "mailto", enabled=False))
        with pytest.raises(NotificationError):
            engine.dispatch(run, "mailto:a@b.c", "s", "b")

    def test_empty_destination_goes_to_universal(self, run):
        engine = NotificationEngine()
        mail = CollectingDispatcher("email", "mailto")
        log = CollectingDispatcher("log", "log")
        engine.register(mail)
        engine.register(log, universal=True)

        engine.dispatch(run, None, "s", "b")

        assert log.received == [(None, "s")]
        assert mail.received == []

    def test_empty_destination_without_universal(self, run):
        with pytest.raises(NotificationError):
            NotificationEngine().dispatch(run, "", "s", "b")

    def test_unregister(self, run):
        engine = NotificationEngine()
        engine.register(CollectingDispatcher("email", "mailto"))
        engine.unregister("email")
        assert engine.schemes() == []

    def test_history_records_failures(self, run):
        engine = NotificationEngine(history_size=2)
        engine.register(BrokenDispatcher("email", "mailto"))
        with pytest.raises(NotificationError):
            engine.dispatch(run, "mailto:a@b.c", "s", "b")

        record = engine.history()[-1]
        assert record.success is False
        assert record.run_id == "r1"
        assert "smtp down" in record.error

    def test_history_is_bounded(self, run):
        engine = NotificationEngine(history_size=2)
        engine.register(CollectingDispatcher("email", "mailto"))
        for i in range(3):
            engine.dispatch(run, "mailto:a@b.c", f"s{i}", "b")
        assert [r.subject for r in engine.history()] == ["s1", "s2"]


# =============================================================================
# Dispatchers
# =============================================================================


class TestEmailDispatcher:
    def test_sends_mail(self, run):
        dispatcher = EmailDispatcher(
            "smtp.example.org",
            "registry@example.org",
            smtp_user="user",
            smtp_password="secret",
        )
        with patch("runregistry.notification.channels.smtplib.SMTP") as smtp_cls:
            server = MagicMock()
            smtp_cls.return_value.__enter__.return_value = server

            dispatcher.dispatch(run, "mailto:alice@example.org", "Done", "Body")

        smtp_cls.assert_called_once_with("smtp.example.org", 587)
        server.starttls.assert_called_once()
        server.login.assert_called_once_with("user", "secret")
        sender, recipients, message = server.sendmail.call_args.args
        assert sender == "registry@example.org"
        assert recipients == ["alice@example.org"]
        assert "Subject: Done" in message

    def test_requires_address(self, run):
        dispatcher = EmailDispatcher("smtp.example.org", "registry@example.org")
        with pytest.raises(NotificationError):
            dispatcher.dispatch(run, None, "s", "b")

    def test_smtp_failure_wrapped(self, run):
        dispatcher = EmailDispatcher("smtp.example.org", "registry@example.org", use_tls=False)
        with patch("runregistry.notification.channels.smtplib.SMTP") as smtp_cls:
            smtp_cls.side_effect = smtplib.SMTPConnectError(421, b"busy")
            with pytest.raises(NotificationError) as exc_info:
                dispatcher.dispatch(run, "alice@example.org", "s", "b")
        assert exc_info.value.retryable is True
        assert exc_info.value.context.run_id == "r1"


class TestLogDispatcher:
    def test_accepts_anything(self, run):
        dispatcher = LogDispatcher()
        dispatcher.dispatch(run, None, "s", "b")
        assert dispatcher.scheme == "log"
        assert dispatcher.enabled
