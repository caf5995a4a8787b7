# =============================================================================
# IMAP Proxy Channel
# =============================================================================
# Kestrel doesn't speak IMAP. A separate helper process does, and we talk to
# it over a very small line protocol:
#
#   request:   one line, e.g. "get_message 42 INBOX\n"
#   response:  any number of lines, terminated by a line holding only "."
#              (lines that start with "." are sent with an extra "." in
#              front, like SMTP and POP3 do)
#
# Commands used by the core:
#   mark_read <id> <folder>       mark_unread <id> <folder>
#   delete_message <id> <folder>  get_message <id> <folder>
#   get_folders                   get_messages <folder>
#
# Design notes:
#   - Everything is synchronous: send() blocks until the whole response
#     has arrived. There is no timeout; a hung proxy hangs the caller.
#   - Only one request may be in flight, so send() holds a lock for the
#     full round trip.
#   - Credentials come from the system keyring and are handed to the proxy
#     through its environment, never on the command line.
# =============================================================================

import logging
import os
import subprocess
import threading
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from kestrel.core import Account

logger = logging.getLogger(__name__)

# Line that ends every response
TERMINATOR = "."


class ProxyChannel:
    """
    The request/response link to the IMAP proxy.

    Subclasses implement send(). The core only ever needs this one call,
    which makes it easy to substitute a fake channel in tests.
    """

    def send(self, line: str) -> str:
        """
        Send one request line and return the complete response.

        Raises:
            ProxyError: If the channel is closed or broken.
        """
        raise NotImplementedError

    def close(self) -> None:
        """Release the channel. The default does nothing."""


class ProxyProcess(ProxyChannel):
    """
    A proxy helper running as a child process, spoken to over stdin/stdout.

    Usage:
        >>> proxy = ProxyProcess(["kestrel-imap-proxy"], account)
        >>> proxy.start()
        >>> proxy.send("get_folders")
        '[{"name": "INBOX", "unread": 3, "total": 120}]'
        >>> proxy.close()

    Attributes:
        command: Argument vector used to launch the helper.
        account: Account whose credentials are passed to the helper.
    """

    def __init__(self, command: list[str], account: "Account | None" = None) -> None:
        self.command = list(command)
        self.account = account
        self._process: subprocess.Popen | None = None
        self._lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        """Check if the helper process is alive."""
        return self._process is not None and self._process.poll() is None

    def _environment(self) -> dict[str, str]:
        """Build the helper's environment, including account credentials."""
        env = dict(os.environ)
        if self.account is None:
            return env

        password = self.account.password()
        if not password:
            raise ProxyStartError(
                f"No password found in keyring for {self.account.username}. "
                f"Set it with: keyring set {self.account.keyring_service} {self.account.username}"
            )

        env["IMAP_SERVER"] = self.account.imap_host
        env["IMAP_PORT"] = str(self.account.imap_port)
        env["IMAP_USERNAME"] = self.account.username
        env["IMAP_PASSWORD"] = password
        return env

    def start(self) -> None:
        """
        Launch the helper process.

        Raises:
            ProxyStartError: If there is no command, no password, or the
                             process cannot be started.
        """
        if self.is_running:
            return
        if not self.command:
            raise ProxyStartError("No proxy command configured")

        env = self._environment()
        logger.info(f"Starting IMAP proxy: {self.command[0]}")

        try:
            self._process = subprocess.Popen(
                self.command,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                env=env,
                text=True,
                encoding="utf-8",
                bufsize=1,
            )
        except OSError as e:
            raise ProxyStartError(f"Failed to start proxy {self.command[0]}: {e}") from e

    def send(self, line: str) -> str:
        """
        Send one request and wait for its response.

        Args:
            line: The request, with or without its trailing newline.

        Returns:
            The response text (dot-unstuffed, terminator removed).

        Raises:
            ProxyError: If the helper isn't running or closes the pipe.
        """
        if not line.endswith("\n"):
            line += "\n"

        with self._lock:
            if self._process is None or self._process.stdin is None:
                raise ProxyError("Proxy process is not running")

            logger.debug(f"Proxy request: {line.rstrip()}")
            try:
                self._process.stdin.write(line)
                self._process.stdin.flush()
            except (BrokenPipeError, ValueError) as e:
                raise ProxyError(f"Proxy closed the channel: {e}") from e

            return self._read_response()

    def _read_response(self) -> str:
        """Read lines up to the terminator."""
        lines: list[str] = []
        while True:
            raw = self._process.stdout.readline()
            if raw == "":
                raise ProxyError("Proxy closed the channel mid-response")

            text = raw.rstrip("\r\n")
            if text == TERMINATOR:
                break
            if text.startswith(".."):
                text = text[1:]
            lines.append(text)

        logger.debug(f"Proxy response: {len(lines)} line(s)")
        return "\n".join(lines) + "\n" if lines else ""

    def close(self) -> None:
        """Stop the helper process."""
        if self._process is None:
            return
        logger.debug("Stopping IMAP proxy")
        try:
            if self._process.stdin:
                self._process.stdin.close()
            self._process.wait(timeout=5)
        except subprocess.TimeoutExpired:
            logger.warning("IMAP proxy did not exit, killing it")
            self._process.kill()
            self._process.wait()
        finally:
            if self._process.stdout:
                self._process.stdout.close()
            self._process = None


# =============================================================================
# Exceptions
# =============================================================================

class ProxyError(Exception):
    """Base exception for proxy channel failures."""
    pass


class ProxyStartError(ProxyError):
    """Raised when the proxy process cannot be launched."""
    pass
