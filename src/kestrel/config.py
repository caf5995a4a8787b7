# =============================================================================
# Configuration Management
# =============================================================================
# Handles loading, saving, and validating Kestrel configuration.
#
# XDG Base Directory Compliance (https://specifications.freedesktop.org/basedir-spec/):
#   - Config:  $XDG_CONFIG_HOME/kestrel/  (default: ~/.config/kestrel/)
#   - Data:    $XDG_DATA_HOME/kestrel/    (default: ~/.local/share/kestrel/)
#   - Cache:   $XDG_CACHE_HOME/kestrel/   (default: ~/.cache/kestrel/)
#   - State:   $XDG_STATE_HOME/kestrel/   (default: ~/.local/state/kestrel/)
#
# Files:
#   - config.toml: User configuration (maildir prefix, proxy, accounts)
#   - imap/: Bodies of remote messages fetched through the proxy (in cache)
#   - kestrel.log: Log output (in state directory)
# =============================================================================

import os
import tomllib  # Built into Python 3.11+
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import tomli_w  # For writing TOML (tomllib is read-only)

from kestrel.core import Account


# =============================================================================
# XDG Directory Management
# =============================================================================

# Application identifier used in all XDG paths
APP_NAME = "kestrel"


def _xdg_home(variable: str, *default: str) -> Path:
    """Resolve one XDG base directory, falling back to the XDG default."""
    value = os.environ.get(variable)
    if value:
        base = Path(value)
    else:
        base = Path.home().joinpath(*default)
    return base / APP_NAME


def get_xdg_config_home() -> Path:
    """
    Returns the XDG config directory for Kestrel.

    Respects $XDG_CONFIG_HOME if set, otherwise uses ~/.config/kestrel/
    """
    return _xdg_home("XDG_CONFIG_HOME", ".config")


def get_xdg_data_home() -> Path:
    """
    Returns the XDG data directory for Kestrel.

    Respects $XDG_DATA_HOME if set, otherwise uses ~/.local/share/kestrel/
    """
    return _xdg_home("XDG_DATA_HOME", ".local", "share")


def get_xdg_cache_home() -> Path:
    """
    Returns the XDG cache directory for Kestrel.

    Respects $XDG_CACHE_HOME if set, otherwise uses ~/.cache/kestrel/
    Remote message bodies are cached here; deleting it only costs a
    re-download.
    """
    return _xdg_home("XDG_CACHE_HOME", ".cache")


def get_xdg_state_home() -> Path:
    """
    Returns the XDG state directory for Kestrel.

    Respects $XDG_STATE_HOME if set, otherwise uses ~/.local/state/kestrel/
    """
    return _xdg_home("XDG_STATE_HOME", ".local", "state")


def ensure_directories() -> dict[str, Path]:
    """
    Creates all required XDG directories if they don't exist.

    Returns:
        Dictionary mapping directory type to path.
    """
    dirs = {
        "config": get_xdg_config_home(),
        "data": get_xdg_data_home(),
        "cache": get_xdg_cache_home(),
        "state": get_xdg_state_home(),
    }

    for dir_path in dirs.values():
        dir_path.mkdir(parents=True, exist_ok=True)

    # Remote message bodies live under the cache directory
    (dirs["cache"] / "imap").mkdir(exist_ok=True)

    return dirs


# =============================================================================
# Configuration Data Structures
# =============================================================================

@dataclass
class GeneralConfig:
    """
    General settings.

    Attributes:
        maildir_prefix: Root of the local Maildir hierarchy.
        tmpdir: Directory for temporary files (e.g., rewritten messages).
    """
    maildir_prefix: str = "~/Maildir"
    tmpdir: str = "/tmp"

    @property
    def maildir_path(self) -> Path:
        return Path(self.maildir_prefix).expanduser()

    @property
    def tmp_path(self) -> Path:
        return Path(self.tmpdir).expanduser()


@dataclass
class MimeConfig:
    """
    Settings for MIME parsing.

    Attributes:
        iconv: Convert text/plain parts in other charsets to UTF-8.
    """
    iconv: bool = False


@dataclass
class IndexConfig:
    """
    Settings for the message index.

    Attributes:
        threading: Show messages as conversation threads.
        sort: Sort method ("date", "subject", "from", "file" or "none").
        promote_unread: Move threads with unread messages to the end.
    """
    threading: bool = True
    sort: str = "date"
    promote_unread: bool = False


@dataclass
class ProxyConfig:
    """
    Settings for the IMAP proxy process.

    Attributes:
        command: Argument vector used to launch the proxy. Empty disables
                 remote folders.
        account: Name of the account (under [accounts]) the proxy serves.
    """
    command: list[str] = field(default_factory=list)
    account: str = ""


@dataclass
class Config:
    """
    Main configuration container for Kestrel.

    Usage:
        >>> config = Config.load()
        >>> config.general.maildir_path
        PosixPath('/home/user/Maildir')
    """
    general: GeneralConfig = field(default_factory=GeneralConfig)
    mime: MimeConfig = field(default_factory=MimeConfig)
    index: IndexConfig = field(default_factory=IndexConfig)
    proxy: ProxyConfig = field(default_factory=ProxyConfig)

    # Account configurations (name -> Account)
    accounts: dict[str, Account] = field(default_factory=dict)

    # -------------------------------------------------------------------------
    # File Paths
    # -------------------------------------------------------------------------

    @staticmethod
    def config_file_path() -> Path:
        """Returns the path to the main config file."""
        return get_xdg_config_home() / "config.toml"

    @staticmethod
    def remote_cache_dir() -> Path:
        """Returns the directory holding fetched remote message bodies."""
        return get_xdg_cache_home() / "imap"

    @staticmethod
    def log_file_path() -> Path:
        """Returns the path to the log file."""
        return get_xdg_state_home() / "kestrel.log"

    @property
    def proxy_account(self) -> Account | None:
        """The account the proxy should log into, if configured."""
        return self.accounts.get(self.proxy.account)

    # -------------------------------------------------------------------------
    # Loading and Saving
    # -------------------------------------------------------------------------

    @classmethod
    def load(cls, path: Path | None = None) -> "Config":
        """
        Load configuration from the config file.

        If the config file doesn't exist, returns default configuration.

        Args:
            path: Config file to read. Defaults to the XDG location.

        Returns:
            Loaded Config object.

        Raises:
            ConfigError: If the config file exists but is invalid.
        """
        if path is None:
            ensure_directories()
            path = cls.config_file_path()

        if not path.exists():
            return cls()

        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigError(f"Invalid config file: {e}") from e

        return cls._from_dict(data)

    def save(self, path: Path | None = None) -> None:
        """
        Save configuration to the config file.

        Creates the config directory if it doesn't exist.
        """
        if path is None:
            ensure_directories()
            path = self.config_file_path()

        with open(path, "wb") as f:
            tomli_w.dump(self._to_dict(), f)

    @classmethod
    def _from_dict(cls, data: dict[str, Any]) -> "Config":
        """
        Create a Config object from a dictionary (parsed TOML).
        """
        config = cls()

        general = data.get("general", {})
        config.general = GeneralConfig(
            maildir_prefix=general.get("maildir_prefix", "~/Maildir"),
            tmpdir=general.get("tmpdir", "/tmp"),
        )

        mime = data.get("mime", {})
        config.mime = MimeConfig(
            iconv=mime.get("iconv", False),
        )

        index = data.get("index", {})
        config.index = IndexConfig(
            threading=index.get("threading", True),
            sort=index.get("sort", "date"),
            promote_unread=index.get("promote_unread", False),
        )

        proxy = data.get("proxy", {})
        command = proxy.get("command", [])
        if isinstance(command, str):
            command = command.split()
        config.proxy = ProxyConfig(
            command=list(command),
            account=proxy.get("account", ""),
        )

        # Accounts - each key under [accounts] is an account name
        for name, acct_data in data.get("accounts", {}).items():
            config.accounts[name] = Account(
                name=name,
                username=acct_data.get("username", ""),
                imap_host=acct_data.get("imap_host", ""),
                imap_port=acct_data.get("imap_port", 993),
            )

        return config

    def _to_dict(self) -> dict[str, Any]:
        """
        Convert Config to a dictionary for TOML serialization.
        """
        data: dict[str, Any] = {}

        data["general"] = {
            "maildir_prefix": self.general.maildir_prefix,
            "tmpdir": self.general.tmpdir,
        }

        data["mime"] = {
            "iconv": self.mime.iconv,
        }

        data["index"] = {
            "threading": self.index.threading,
            "sort": self.index.sort,
            "promote_unread": self.index.promote_unread,
        }

        data["proxy"] = {
            "command": self.proxy.command,
            "account": self.proxy.account,
        }

        data["accounts"] = {}
        for name, account in self.accounts.items():
            data["accounts"][name] = {
                "username": account.username,
                "imap_host": account.imap_host,
                "imap_port": account.imap_port,
            }

        return data


# =============================================================================
# Exceptions
# =============================================================================

class ConfigError(Exception):
    """Raised when there's an error loading or parsing configuration."""
    pass


# =============================================================================
# Utility Functions
# =============================================================================

def print_paths() -> None:
    """
    Print all XDG paths for debugging.
    Useful for users wondering where their config/data is stored.
    """
    print(f"Config:  {get_xdg_config_home()}")
    print(f"Data:    {get_xdg_data_home()}")
    print(f"Cache:   {get_xdg_cache_home()}")
    print(f"State:   {get_xdg_state_home()}")
    print()
    print(f"Config file:  {Config.config_file_path()}")
    print(f"Remote cache: {Config.remote_cache_dir()}")
    print(f"Log file:     {Config.log_file_path()}")
