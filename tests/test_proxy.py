# =============================================================================
# Tests for the IMAP proxy process channel
# =============================================================================
# The proxy here is a tiny Python script speaking the same line protocol.
# =============================================================================

import sys
import textwrap

import pytest

from kestrel.core import Account
from kestrel.proxy import ProxyError, ProxyProcess, ProxyStartError


PROXY_SCRIPT = textwrap.dedent(
    """
    import os
    import sys

    for line in sys.stdin:
        command = line.split()
        if not command:
            continue
        if command[0] == "whoami":
            print(os.environ.get("IMAP_USERNAME", ""))
            print(os.environ.get("IMAP_SERVER", ""))
            print(os.environ.get("IMAP_PORT", ""))
        elif command[0] == "dots":
            print("..leading dot")
            print("plain")
        elif command[0] == "quit":
            sys.exit(0)
        print(".")
        sys.stdout.flush()
    """
)


@pytest.fixture
def script(temp_dir):
    path = temp_dir / "proxy.py"
    path.write_text(PROXY_SCRIPT)
    return path


@pytest.fixture
def account(monkeypatch):
    monkeypatch.setattr("keyring.get_password", lambda service, username: "hunter2")
    return Account(name="work", username="me@example.com", imap_host="imap.example.com")


@pytest.fixture
def proxy(script, account):
    proxy = ProxyProcess([sys.executable, str(script)], account)
    proxy.start()
    yield proxy
    proxy.close()


def test_credentials_passed_in_environment(proxy):
    assert proxy.is_running
    assert proxy.send("whoami") == "me@example.com\nimap.example.com\n993\n"


def test_dot_unstuffing(proxy):
    assert proxy.send("dots\n") == ".leading dot\nplain\n"


def test_empty_response(proxy):
    assert proxy.send("nothing") == ""


def test_proxy_exit_raises(proxy):
    with pytest.raises(ProxyError):
        proxy.send("quit")


def test_send_before_start(script):
    proxy = ProxyProcess([sys.executable, str(script)])
    with pytest.raises(ProxyError):
        proxy.send("whoami")


def test_close_stops_process(proxy):
    proxy.close()
    assert not proxy.is_running


def test_missing_password(script, monkeypatch):
    monkeypatch.setattr("keyring.get_password", lambda service, username: None)
    account = Account(name="work", username="me@example.com")

    proxy = ProxyProcess([sys.executable, str(script)], account)
    with pytest.raises(ProxyStartError, match="keyring set kestrel:work"):
        proxy.start()


def test_no_command():
    with pytest.raises(ProxyStartError):
        ProxyProcess([]).start()


def test_bad_command(temp_dir):
    with pytest.raises(ProxyStartError):
        ProxyProcess([str(temp_dir / "does-not-exist")]).start()
