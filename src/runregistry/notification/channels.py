"""Bundled notification dispatchers: e-mail over SMTP and the log."""

from __future__ import annotations

import smtplib
from email.mime.text import MIMEText
from typing import Any

from runregistry.core.errors import NotificationError
from runregistry.core.logging import get_logger
from runregistry.runs import RunHandle

logger = get_logger(__name__)


class BaseDispatcher:
    """Common name/scheme/enable handling for dispatchers."""

    def __init__(self, name: str, scheme: str, *, enabled: bool = True):
        self._name = name
        self._scheme = scheme
        self._enabled = enabled

    @property
    def name(self) -> str:
        return self._name

    @property
    def scheme(self) -> str:
        return self._scheme

    @property
    def enabled(self) -> bool:
        return self._enabled

    def enable(self) -> None:
        self._enabled = True

    def disable(self) -> None:
        self._enabled = False


class EmailDispatcher(BaseDispatcher):
    """
    Sends completion messages by SMTP.

    Destinations are ``mailto:`` URIs or bare addresses.
    """

    def __init__(
        self,
        smtp_host: str,
        from_address: str,
        *,
        name: str = "email",
        smtp_port: int = 587,
        smtp_user: str | None = None,
        smtp_password: str | None = None,
        use_tls: bool = True,
        **kwargs: Any,
    ):
        super().__init__(name, "mailto", **kwargs)
        self._smtp_host = smtp_host
        self._smtp_port = smtp_port
        self._smtp_user = smtp_user
        self._smtp_password = smtp_password
        self._from_address = from_address
        self._use_tls = use_tls

    def _build_message(self, recipient: str, subject: str, body: str) -> str:
        msg = MIMEText(body, "plain", "utf-8")
        msg["Subject"] = subject
        msg["From"] = self._from_address
        msg["To"] = recipient
        return msg.as_string()

    def dispatch(self, run: RunHandle, destination: str | None, subject: str, body: str) -> None:
        if not destination:
            raise NotificationError("e-mail notification needs an address").with_context(
                run_id=run.id
            )
        recipient = destination.removeprefix("mailto:")
        try:
            with smtplib.SMTP(self._smtp_host, self._smtp_port) as server:
                if self._use_tls:
                    server.starttls()
                if self._smtp_user and self._smtp_password:
                    server.login(self._smtp_user, self._smtp_password)
                server.sendmail(
                    self._from_address,
                    [recipient],
                    self._build_message(recipient, subject, body),
                )
        except (smtplib.SMTPException, OSError) as exc:
            raise NotificationError(f"mail to {recipient} failed", cause=exc).with_context(
                run_id=run.id
            ) from exc
        logger.info("notification_mailed", run_id=run.id, recipient=recipient)


class LogDispatcher(BaseDispatcher):
    """Writes the message to the structured log. Accepts any destination."""

    def __init__(self, name: str = "log", scheme: str = "log", **kwargs: Any):
        super().__init__(name, scheme, **kwargs)

    def dispatch(self, run: RunHandle, destination: str | None, subject: str, body: str) -> None:
        logger.info(
            "run_completion_notice",
            run_id=run.id,
            destination=destination,
            subject=subject,
            body=body,
        )


__all__ = ["BaseDispatcher", "EmailDispatcher", "LogDispatcher"]
