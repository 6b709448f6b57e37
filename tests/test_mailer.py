from __future__ import annotations

from datetime import datetime, timezone
from typing import List

import pytest

from localdata import mailer as mailer_module
from localdata.mailer import DevMailer, SMTPMailer, build_reset_message

EXPIRES = datetime(2024, 5, 1, 12, 30, tzinfo=timezone.utc)


@pytest.fixture()
def anyio_backend() -> str:
    return "asyncio"


def test_reset_link_quotes_the_code() -> None:
    message = build_reset_message(
        "user@example.com",
        "abc+/=def",
        EXPIRES,
        link_template="https://localdata.test/reset?code={code}",
    )

    assert "https://localdata.test/reset?code=abc%2B%2F%3Ddef" in message.body
    assert "2024-05-01 12:30 UTC" in message.body
    assert message.recipient == "user@example.com"
    assert message.code == "abc+/=def"


@pytest.mark.anyio
async def test_dev_mailer_records_without_logging_the_code(caplog) -> None:
    mailer = DevMailer()
    message = build_reset_message("a@example.com", "secret-code", EXPIRES, link_template="{code}")

    with caplog.at_level("INFO", logger="localdata.mailer"):
        await mailer.send(message)

    assert mailer.last_message() is message
    assert mailer.messages_to("a@example.com") == [message]
    assert mailer.messages_to("b@example.com") == []
    assert "secret-code" not in caplog.text


class FakeSMTP:
    instances: List["FakeSMTP"] = []

    def __init__(self, host: str, port: int, timeout: float) -> None:
        self.host = host
        self.port = port
        self.calls: List[tuple] = []
        FakeSMTP.instances.append(self)

    def __enter__(self) -> "FakeSMTP":
        return self

    def __exit__(self, *exc_info) -> None:
        self.calls.append(("quit",))

    def starttls(self) -> None:
        self.calls.append(("starttls",))

    def login(self, username: str, password: str) -> None:
        self.calls.append(("login", username, password))

    def send_message(self, message) -> None:
        self.calls.append(("send", message["To"], message["Subject"]))


@pytest.mark.anyio
async def test_smtp_mailer_uses_starttls_and_login(monkeypatch) -> None:
    FakeSMTP.instances = []
    monkeypatch.setattr(mailer_module.smtplib, "SMTP", FakeSMTP)
    smtp = SMTPMailer(
        "smtp.example.com",
        port=2525,
        sender="no-reply@example.com",
        username="relay",
        password="hunter2",
    )

    await smtp.send(build_reset_message("user@example.com", "code", EXPIRES, link_template="{code}"))

    (client,) = FakeSMTP.instances
    assert (client.host, client.port) == ("smtp.example.com", 2525)
    assert client.calls == [
        ("starttls",),
        ("login", "relay", "hunter2"),
        ("send", "user@example.com", mailer_module.RESET_SUBJECT),
        ("quit",),
    ]
