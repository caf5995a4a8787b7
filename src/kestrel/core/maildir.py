# =============================================================================
# Maildir Model
# =============================================================================
# A folder of messages. Two kinds exist:
#
#   - Local: a Maildir directory with new/, cur/ and tmp/ subdirectories.
#            Each message is one file; flags ride along in the filename.
#   - Remote: an IMAP mailbox, named by its server-side path and listed
#             through the proxy.
#
# The message list is cached and only rebuilt when the folder's
# modification time moves. For a local folder that is the newest mtime of
# new/ and cur/; for a remote one it is a counter bumped whenever we change
# something through the proxy.
#
# Unread and total counts are computed once on scan and afterwards adjusted
# by the messages themselves as their flags change or they are deleted.
# =============================================================================

import itertools
import json
import logging
import os
import socket
import time
from pathlib import Path
from typing import TYPE_CHECKING

from kestrel.core.message import Backend, LocalMessage, Message, RemoteMessage
from kestrel.proxy import ProxyError

if TYPE_CHECKING:
    from kestrel.context import Context

logger = logging.getLogger(__name__)

SUBDIRECTORIES = ("new", "cur", "tmp")

# Per-process delivery counter for unique filenames
_deliveries = itertools.count(1)


class Maildir:
    """
    A local Maildir directory or a remote IMAP folder.

    Attributes:
        path: Filesystem path (local) or remote folder name (remote).
        context: Shared collaborators.
        backend: LOCAL or REMOTE.

    Example:
        >>> inbox = Maildir("/home/user/Maildir/INBOX", ctx)
        >>> inbox.unread_messages()
        3
        >>> [m.header("subject") for m in inbox.messages()]
        ['Hello', 'Re: Hello', 'Lunch?']
    """

    def __init__(
        self,
        path: str | Path,
        context: "Context",
        backend: Backend = Backend.LOCAL,
        *,
        prefix: str | Path | None = None,
    ) -> None:
        self.path = str(path)
        self.context = context
        self.backend = backend
        self.prefix = str(prefix) if prefix is not None else None

        self._messages: list[Message] | None = None
        self._cached_mtime: int | None = None
        self._bumps = 0

        self._unread: int | None = None
        self._total: int | None = None

    @property
    def is_local(self) -> bool:
        return self.backend is Backend.LOCAL

    @property
    def is_remote(self) -> bool:
        return self.backend is Backend.REMOTE

    @property
    def name(self) -> str:
        """
        Display name: the path relative to the maildir prefix, if known.

        Example:
            >>> Maildir("/home/user/Maildir/lists/python", ctx, prefix="/home/user/Maildir").name
            'lists/python'
        """
        if self.is_local and self.prefix:
            try:
                return str(Path(self.path).relative_to(self.prefix))
            except ValueError:
                pass
        return self.path

    # -------------------------------------------------------------------------
    # Filesystem
    # -------------------------------------------------------------------------

    def exists(self) -> bool:
        """Is this a real Maildir (it has a cur/ directory)?"""
        if self.is_remote:
            return True
        return os.path.isdir(os.path.join(self.path, "cur"))

    def create(self) -> bool:
        """
        Create the folder with its new/, cur/ and tmp/ directories.

        Returns:
            True if the folder exists afterwards.
        """
        if self.is_remote:
            return False
        try:
            for sub in SUBDIRECTORIES:
                os.makedirs(os.path.join(self.path, sub), exist_ok=True)
        except OSError as e:
            self.context.report_error(f"Failed to create maildir {self.path}: {e}")
            return False
        return True

    def mtime(self) -> int:
        """
        The folder's modification stamp.

        For local folders this is the latest mtime of new/ and cur/, for
        remote ones a counter bumped by bump_mtime().
        """
        if self.is_remote:
            return self._bumps

        latest = 0
        for sub in ("new", "cur"):
            try:
                latest = max(latest, int(os.stat(os.path.join(self.path, sub)).st_mtime_ns))
            except OSError:
                continue
        return latest + self._bumps

    def bump_mtime(self) -> None:
        """Mark the folder as changed so the next messages() call rescans."""
        self._bumps += 1

    def generate_path(self, is_new: bool = True) -> str:
        """
        Build a unique filename for a message delivered to this folder.

        The name follows the usual "<time>.<pid>_<counter>.<host>" pattern.
        Messages delivered as read land in cur/ with an empty flag suffix.
        """
        host = socket.gethostname().replace("/", "\\057").replace(":", "\\072")
        name = f"{int(time.time())}.{os.getpid()}_{next(_deliveries)}.{host}"
        if is_new:
            return os.path.join(self.path, "new", name)
        return os.path.join(self.path, "cur", name + ":2,")

    def save_message(self, data: bytes, is_new: bool = True) -> LocalMessage | None:
        """
        Deliver a message into this folder.

        The file is written to tmp/ first and renamed into place, so
        readers never see a partial message.

        Returns:
            The new message, or None if delivery failed.
        """
        if self.is_remote:
            self.context.report_error(f"Cannot save a message into remote folder {self.path}")
            return None

        destination = self.generate_path(is_new)
        staging = os.path.join(self.path, "tmp", os.path.basename(destination))
        try:
            with open(staging, "wb") as f:
                f.write(data)
            os.rename(staging, destination)
        except OSError as e:
            self.context.report_error(f"Failed to save message into {self.path}: {e}")
            return None

        message = LocalMessage(destination, self.context, parent=self)
        self._note_added(message)
        return message

    # -------------------------------------------------------------------------
    # Messages
    # -------------------------------------------------------------------------

    def _scan_local(self) -> list[Message]:
        messages: list[Message] = []
        for sub in ("cur", "new"):
            directory = os.path.join(self.path, sub)
            try:
                names = sorted(os.listdir(directory))
            except OSError as e:
                logger.debug(f"Skipping {directory}: {e}")
                continue
            for name in names:
                if name.startswith("."):
                    continue
                full = os.path.join(directory, name)
                if os.path.isfile(full):
                    messages.append(LocalMessage(full, self.context, parent=self))
        return messages

    def _scan_remote(self) -> list[Message]:
        proxy = self.context.proxy
        if proxy is None:
            self.context.report_error(f"No IMAP proxy available to list {self.path}")
            return []

        try:
            response = proxy.send(f"get_messages {self.path}")
        except ProxyError as e:
            self.context.report_error(f"IMAP proxy failed to list {self.path}: {e}")
            return []

        try:
            entries = json.loads(response) if response.strip() else []
        except json.JSONDecodeError as e:
            self.context.report_error(f"Garbled message list for {self.path}: {e}")
            return []

        cache = self.context.remote_cache_dir / self.path
        messages: list[Message] = []
        for entry in entries:
            try:
                remote_id = int(entry["id"])
            except (KeyError, TypeError, ValueError):
                logger.warning(f"Skipping message entry without id in {self.path}: {entry!r}")
                continue
            messages.append(
                RemoteMessage(
                    cache / str(remote_id),
                    self.context,
                    remote_id=remote_id,
                    folder=self.path,
                    flags=str(entry.get("flags", "")),
                    parent=self,
                )
            )
        return messages

    def messages(self) -> list[Message]:
        """
        The messages in this folder.

        The list is cached until the folder's modification stamp changes.
        Rescanning also recounts unread and total messages.
        """
        current = self.mtime()
        if self._messages is not None and self._cached_mtime == current:
            return list(self._messages)

        logger.debug(f"Scanning {self.path}")
        if self.is_remote:
            self._messages = self._scan_remote()
        else:
            self._messages = self._scan_local()
        self._cached_mtime = current

        self._total = len(self._messages)
        self._unread = sum(1 for m in self._messages if m.is_new())
        return list(self._messages)

    # -------------------------------------------------------------------------
    # Counters
    # -------------------------------------------------------------------------

    def _count(self) -> None:
        """Count messages without keeping the list, for folder overviews."""
        if self.is_remote:
            self.messages()
            return

        total = unread = 0
        for sub in ("cur", "new"):
            directory = os.path.join(self.path, sub)
            try:
                names = os.listdir(directory)
            except OSError:
                continue
            for name in names:
                if name.startswith("."):
                    continue
                total += 1
                if sub == "new":
                    unread += 1
                    continue
                _, _, flags = name.partition(":2,")
                if "S" not in flags.upper() or "N" in flags.upper():
                    unread += 1
        self._total = total
        self._unread = unread

    def total_messages(self) -> int:
        """Number of messages in the folder."""
        if self._total is None:
            self._count()
        return self._total

    def unread_messages(self) -> int:
        """Number of new (unread) messages in the folder."""
        if self._unread is None:
            self._count()
        return self._unread

    def set_unread(self, count: int) -> None:
        self._unread = max(count, 0)

    def set_total(self, count: int) -> None:
        self._total = max(count, 0)

    # The hooks below run after the change is already on disk. Counters that
    # were never computed are left alone; the first count will see it.

    def adjust_unread(self, delta: int) -> None:
        """Called by a message whose new/read state just flipped."""
        if self._unread is not None:
            self.set_unread(self._unread + delta)

    def _note_added(self, message: Message) -> None:
        self._messages = None
        if self._total is not None:
            self.set_total(self._total + 1)
        if message.is_new():
            self.adjust_unread(1)

    def note_removed(self, was_new: bool) -> None:
        """Called by a message that has just been deleted."""
        self._messages = None
        if self._total is not None:
            self.set_total(self._total - 1)
        if was_new:
            self.adjust_unread(-1)

    def __str__(self) -> str:
        unread = self.unread_messages()
        unread_indicator = f" ({unread})" if unread > 0 else ""
        return f"{self.name}{unread_indicator}"

    def __repr__(self) -> str:
        return (
            f"Maildir(path={self.path!r}, backend={self.backend.name}, "
            f"messages={self._total}, unread={self._unread})"
        )


# =============================================================================
# Folder Discovery
# =============================================================================

def list_maildirs(prefix: str | Path, context: "Context") -> list[Maildir]:
    """
    Find every Maildir beneath a prefix directory.

    A directory counts as a Maildir if it has a cur/ subdirectory. The
    new/, cur/ and tmp/ directories themselves are never descended into.

    Returns:
        Maildirs sorted by path.
    """
    prefix = Path(prefix)
    found: list[Maildir] = []

    for root, dirs, _ in os.walk(prefix):
        if "cur" in dirs:
            found.append(Maildir(root, context, prefix=prefix))
        dirs[:] = sorted(d for d in dirs if d not in SUBDIRECTORIES)

    found.sort(key=lambda m: m.path)
    return found


def list_remote_folders(context: "Context") -> list[Maildir]:
    """
    Ask the proxy for the remote folder list.

    The proxy answers "get_folders" with a JSON array of objects carrying
    "name", "unread" and "total".

    Returns:
        Remote Maildirs with their counters pre-filled, or [] on failure.
    """
    proxy = context.proxy
    if proxy is None:
        context.report_error("No IMAP proxy available to list remote folders")
        return []

    try:
        response = proxy.send("get_folders")
        entries = json.loads(response) if response.strip() else []
    except ProxyError as e:
        context.report_error(f"IMAP proxy failed to list folders: {e}")
        return []
    except json.JSONDecodeError as e:
        context.report_error(f"Garbled folder list from IMAP proxy: {e}")
        return []

    folders: list[Maildir] = []
    for entry in entries:
        name = entry.get("name") if isinstance(entry, dict) else None
        if not name:
            logger.warning(f"Skipping folder entry without name: {entry!r}")
            continue
        folder = Maildir(name, context, Backend.REMOTE)
        folder.set_total(int(entry.get("total", 0)))
        folder.set_unread(int(entry.get("unread", 0)))
        folders.append(folder)
    return folders
