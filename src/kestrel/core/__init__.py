# =============================================================================
# Kestrel Core Module
# =============================================================================
# This module contains the core domain models for Kestrel:
#   - Account: A remote IMAP account served through the proxy
#   - Maildir: A folder of messages (local directory or remote mailbox)
#   - Message: An individual email message (LocalMessage / RemoteMessage)
#   - MessagePart: One node of a message's MIME structure
#
# Nothing here imports the front end; a Context object carries the
# configuration, proxy channel and hooks these models need.
# =============================================================================

from kestrel.core.account import Account
from kestrel.core.part import MessagePart
from kestrel.core.message import (
    Backend,
    LocalMessage,
    Message,
    RemoteMessage,
    canonical_flags,
)
from kestrel.core.maildir import Maildir, list_maildirs, list_remote_folders

__all__ = [
    "Account",
    "Backend",
    "LocalMessage",
    "Maildir",
    "Message",
    "MessagePart",
    "RemoteMessage",
    "canonical_flags",
    "list_maildirs",
    "list_remote_folders",
]
