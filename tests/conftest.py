# =============================================================================
# Pytest Configuration and Fixtures
# =============================================================================
# Shared fixtures for the Kestrel test suite.
# =============================================================================

import pytest
import tempfile
from pathlib import Path

from kestrel.config import Config
from kestrel.context import Context
from kestrel.core import Maildir
from kestrel.proxy import ProxyChannel


class FakeChannel(ProxyChannel):
    """
    A proxy channel that records requests and replays canned responses.

    Responses are looked up by the request's first word; a response may
    be an exception instance, which is raised instead.
    """

    def __init__(self, responses: dict | None = None) -> None:
        self.responses = dict(responses or {})
        self.sent: list[str] = []

    def send(self, line: str) -> str:
        self.sent.append(line)
        response = self.responses.get(line.split()[0], "")
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def errors():
    """Collects messages passed to the context's error hook."""
    return []


@pytest.fixture
def config(temp_dir):
    """A default Config pointing its maildir prefix and tmpdir at temp_dir."""
    config = Config()
    config.general.maildir_prefix = str(temp_dir / "Maildir")
    config.general.tmpdir = str(temp_dir)
    return config


@pytest.fixture
def channel():
    """A FakeChannel with no canned responses."""
    return FakeChannel()


@pytest.fixture
def context(config, errors, channel, temp_dir):
    """A Context wired to the fake channel and the errors list."""
    return Context(
        config=config,
        proxy=channel,
        on_error=errors.append,
        remote_cache=temp_dir / "cache",
    )


@pytest.fixture
def make_maildir(temp_dir, context):
    """Factory creating an empty local Maildir under temp_dir/Maildir."""
    def _make(name: str = "INBOX") -> Maildir:
        folder = Maildir(temp_dir / "Maildir" / name, context, prefix=temp_dir / "Maildir")
        assert folder.create()
        return folder
    return _make


@pytest.fixture
def write_message():
    """
    Factory writing a raw message file.

    Usage:
        path = write_message(folder_path / "cur" / "1.host:2,S", subject="Hi")
    """
    def _write(
        path: Path,
        subject: str = "Test Subject",
        message_id: str | None = None,
        references: str | None = None,
        in_reply_to: str | None = None,
        date: str = "Mon, 15 Jan 2024 10:30:00 +0000",
        body: str = "This is a test email body.\n",
        extra: str = "",
    ) -> Path:
        lines = ["From: Test Sender <sender@example.com>", f"Subject: {subject}", f"Date: {date}"]
        if message_id:
            lines.append(f"Message-ID: <{message_id}>")
        if references:
            lines.append(f"References: {references}")
        if in_reply_to:
            lines.append(f"In-Reply-To: {in_reply_to}")
        if extra:
            lines.append(extra.rstrip("\n"))
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(("\n".join(lines) + "\n\n" + body).encode("utf-8"))
        return path
    return _write


@pytest.fixture
def sample_multipart_email():
    """A multipart/alternative message with a plain and an HTML part."""
    return (
        b"From: sender@example.com\n"
        b"To: recipient@example.com\n"
        b"Subject: Multipart\n"
        b"MIME-Version: 1.0\n"
        b'Content-Type: multipart/alternative; boundary="XYZ"\n'
        b"\n"
        b"--XYZ\n"
        b"Content-Type: text/plain; charset=utf-8\n"
        b"\n"
        b"Plain body\n"
        b"--XYZ\n"
        b"Content-Type: text/html; charset=utf-8\n"
        b"\n"
        b"<p>HTML body</p>\n"
        b"--XYZ--\n"
    )
