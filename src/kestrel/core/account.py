# =============================================================================
# Account Model
# =============================================================================
# Represents a remote IMAP account. Kestrel never talks IMAP itself: the
# account details are handed to the external proxy process, which does the
# real work and answers our line-based requests.
#
# IMPORTANT: Passwords are NOT stored here. They are retrieved from the system
# keyring at runtime using the 'keyring' library. This keeps credentials secure
# and out of config files.
# =============================================================================

from dataclasses import dataclass

import keyring


@dataclass
class Account:
    """
    Represents a remote mail account served through the IMAP proxy.

    Attributes:
        name: A unique identifier for this account (e.g., "personal", "work").
              Used as the key in config files and for keyring lookups.
        username: Login name on the IMAP server (usually the email address).
        imap_host: Hostname of the IMAP server (e.g., "imap.example.com").
        imap_port: Port for the IMAP connection (993 for IMAP over SSL).

    Example:
        >>> account = Account(
        ...     name="personal",
        ...     username="user@example.com",
        ...     imap_host="imap.example.com",
        ... )
    """

    name: str
    username: str
    imap_host: str = ""
    imap_port: int = 993

    @property
    def keyring_service(self) -> str:
        """
        Returns the service name used for keyring password storage.

        We use a consistent naming scheme so passwords can be easily
        managed via the keyring CLI if needed:
            keyring set kestrel:personal user@example.com
        """
        return f"kestrel:{self.name}"

    def password(self) -> str | None:
        """Look up this account's password in the system keyring."""
        return keyring.get_password(self.keyring_service, self.username)

    def __str__(self) -> str:
        return f"{self.name} <{self.username}>"

    def __repr__(self) -> str:
        return (
            f"Account(name={self.name!r}, username={self.username!r}, "
            f"imap={self.imap_host}:{self.imap_port})"
        )
