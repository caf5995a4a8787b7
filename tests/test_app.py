# =============================================================================
# Tests for the command-line front end
# =============================================================================

import os

import pytest

from kestrel.app import main


@pytest.fixture(autouse=True)
def xdg(temp_dir, monkeypatch):
    for variable in ("XDG_CONFIG_HOME", "XDG_DATA_HOME", "XDG_CACHE_HOME", "XDG_STATE_HOME"):
        monkeypatch.setenv(variable, str(temp_dir / variable.lower()))


@pytest.fixture
def config_file(temp_dir):
    path = temp_dir / "config.toml"
    path.write_text(
        f'[general]\nmaildir_prefix = "{temp_dir / "Maildir"}"\n'
        '[index]\nsort = "date"\n'
    )
    return path


def test_paths(capsys):
    assert main(["--paths"]) == 0
    assert "kestrel.log" in capsys.readouterr().out


def test_no_command(capsys):
    assert main([]) == 2


def test_folders(config_file, make_maildir, write_message, capsys):
    inbox = make_maildir("INBOX")
    write_message(os.path.join(inbox.path, "new", "1.a.host"))
    write_message(os.path.join(inbox.path, "cur", "2.a.host:2,S"))

    assert main(["--config", str(config_file), "folders"]) == 0

    out = capsys.readouterr().out
    assert "INBOX" in out
    assert out.split()[:2] == ["1", "2"]


def test_index_threads(config_file, make_maildir, write_message, capsys):
    inbox = make_maildir("INBOX")
    write_message(
        os.path.join(inbox.path, "cur", "1.a.host:2,S"),
        subject="Hello",
        message_id="1@x",
        date="Mon, 15 Jan 2024 09:00:00 +0000",
    )
    write_message(
        os.path.join(inbox.path, "new", "2.a.host"),
        subject="Re: Hello",
        message_id="2@x",
        references="<1@x>",
        date="Mon, 15 Jan 2024 10:00:00 +0000",
    )

    assert main(["--config", str(config_file), "index", "INBOX"]) == 0

    lines = capsys.readouterr().out.splitlines()
    assert len(lines) == 2
    assert lines[0].startswith("  Test Sender")
    assert lines[0].endswith("Hello")
    assert lines[1].startswith("  N Test Sender")
    assert lines[1].endswith("Re: Hello")


def test_index_not_a_maildir(config_file, capsys):
    assert main(["--config", str(config_file), "index", "Nope"]) == 1


def test_parts(config_file, temp_dir, sample_multipart_email, capsys):
    path = temp_dir / "message.eml"
    path.write_bytes(sample_multipart_email)

    assert main(["--config", str(config_file), "parts", str(path)]) == 0

    lines = capsys.readouterr().out.splitlines()
    assert lines[0] == "multipart/alternative"
    assert lines[1].startswith("  text/plain")
    assert lines[2].startswith("  text/html")


def test_invalid_config(temp_dir, capsys):
    path = temp_dir / "broken.toml"
    path.write_text("[general")
    assert main(["--config", str(path), "folders"]) == 1
    assert "Config error" in capsys.readouterr().err
