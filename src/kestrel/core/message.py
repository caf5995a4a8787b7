# =============================================================================
# Message Model
# =============================================================================
# Represents one email message. A message comes in two flavours:
#
#   - LocalMessage:  a file in a Maildir. Its flags are encoded in the
#                    filename ("1700000000.123.host:2,FS"), so changing a
#                    flag means renaming the file.
#   - RemoteMessage: a message on an IMAP server, reached through the proxy.
#                    Its flags live in memory only; its body is fetched on
#                    first use into a local cache file.
#
# Both share the same capabilities: flags, headers, MIME parts, marking
# read/unread and deletion.
#
# Maildir flags are single upper-case letters:
#   D = draft, F = flagged, P = passed, R = replied, S = seen, T = trashed
# plus Kestrel's "N" (new), which is implied for anything still in new/.
#
# Headers and MIME parts are parsed once and cached. Flag changes never
# touch those caches; rewriting the file (adding attachments) clears them.
# =============================================================================

import contextlib
import email.utils
import logging
import os
import weakref
from enum import Enum, auto
from pathlib import Path
from typing import TYPE_CHECKING, BinaryIO, Iterator

from kestrel.core import mime
from kestrel.core.part import MessagePart
from kestrel.proxy import ProxyError

if TYPE_CHECKING:
    from kestrel.context import Context
    from kestrel.core.maildir import Maildir

logger = logging.getLogger(__name__)

# Separator between a Maildir filename and its flags
FLAG_SEPARATOR = ":2,"


class Backend(Enum):
    """Where a message (or folder) actually lives."""
    LOCAL = auto()      # Maildir on the local filesystem
    REMOTE = auto()     # IMAP mailbox behind the proxy


def canonical_flags(flags: str) -> str:
    """
    Normalise a flag string: upper-case, sorted, no duplicates.

    Example:
        >>> canonical_flags("sfS")
        'FS'
    """
    return "".join(sorted(set(flags.upper())))


class Message:
    """
    Base class for local and remote messages.

    Attributes:
        context: Shared collaborators (config, proxy, error hook).
        backend: LOCAL or REMOTE.
    """

    backend: Backend

    def __init__(
        self,
        path: str | Path,
        context: "Context",
        parent: "Maildir | None" = None,
    ) -> None:
        self._path = str(path)
        self.context = context
        self._parent: weakref.ReferenceType | None = None
        if parent is not None:
            self.parent = parent

        # Parsed caches - None until the message is first parsed
        self._headers: dict[str, str] | None = None
        self._root: MessagePart | None = None

    # -------------------------------------------------------------------------
    # Identity
    # -------------------------------------------------------------------------

    @property
    def path(self) -> str:
        """The file holding this message's content."""
        return self._path

    @property
    def parent(self) -> "Maildir | None":
        """The folder this message belongs to (not owned by the message)."""
        if self._parent is None:
            return None
        return self._parent()

    @parent.setter
    def parent(self, folder: "Maildir | None") -> None:
        self._parent = weakref.ref(folder) if folder is not None else None

    @property
    def is_local(self) -> bool:
        return self.backend is Backend.LOCAL

    @property
    def is_remote(self) -> bool:
        return self.backend is Backend.REMOTE

    # -------------------------------------------------------------------------
    # Flags
    # -------------------------------------------------------------------------

    def get_flags(self) -> str:
        """Return the canonical flag string."""
        raise NotImplementedError

    def _write_flags(self, flags: str) -> bool:
        """Store an already-canonical flag string. Returns True on change."""
        raise NotImplementedError

    @contextlib.contextmanager
    def _tracking_unread(self) -> Iterator[None]:
        """Keep the parent folder's unread count in step with a flag change."""
        was_new = self.is_new()
        yield
        now_new = self.is_new()
        folder = self.parent
        if folder is not None and was_new != now_new:
            folder.adjust_unread(1 if now_new else -1)

    def _effective_flags(self, flags: str) -> str:
        """The flags get_flags() would report once `flags` were stored."""
        return flags

    def _change_flags(self, flags: str) -> bool:
        """Store a new flag set. Returns True only if get_flags() changes."""
        before = self.get_flags()
        flags = canonical_flags(flags)
        if self._effective_flags(flags) == before:
            return False
        with self._tracking_unread():
            if not self._write_flags(flags):
                return False
        return self.get_flags() != before

    def set_flags(self, flags: str) -> bool:
        """
        Replace all flags.

        Returns:
            True if the flags changed.
        """
        return self._change_flags(flags)

    def has_flag(self, flag: str) -> bool:
        """Check for a flag (case-insensitive)."""
        return flag.upper() in self.get_flags()

    def add_flag(self, flag: str) -> bool:
        """
        Add a flag.

        Returns:
            True if the flag was added, False if it was already present.
        """
        flag = flag.upper()
        current = self.get_flags()
        if flag in current:
            return False
        return self._change_flags(current + flag)

    def remove_flag(self, flag: str) -> bool:
        """
        Remove a flag.

        Returns:
            True if the flag was removed, False if it wasn't present or
            can't be removed.
        """
        flag = flag.upper()
        current = self.get_flags()
        if flag not in current:
            return False
        return self._change_flags(current.replace(flag, ""))

    def is_new(self) -> bool:
        """
        Is this message new?

        A message is new if it has the "N" flag, or if it lacks the "S"
        flag. So a message with neither is new: it has not been proven seen.
        """
        flags = self.get_flags()
        return "N" in flags or "S" not in flags

    def mark_read(self) -> bool:
        """Mark this message as read. Returns True on success."""
        raise NotImplementedError

    def mark_unread(self) -> bool:
        """Mark this message as unread. Returns True on success."""
        raise NotImplementedError

    def unlink(self) -> bool:
        """Delete this message. Returns True on success."""
        raise NotImplementedError

    def mtime(self) -> int:
        """A value that changes whenever the message changes."""
        raise NotImplementedError

    # -------------------------------------------------------------------------
    # Headers and MIME parts
    # -------------------------------------------------------------------------

    def _read_source(self) -> bytes | None:
        """Read the raw message, honouring the path-rewrite hook."""
        path = self.path
        replacement = self.context.replacement_path(path)
        source = replacement or path

        try:
            with open(source, "rb") as f:
                return f.read()
        except OSError as e:
            if os.path.exists(path):
                self.context.report_error(
                    f"Failed to open the existing message file: {path} {e.strerror}"
                )
            else:
                self.context.report_error(
                    f"Failed to open the message file - not found: {path} {e.strerror}"
                )
            return None
        finally:
            if replacement:
                with contextlib.suppress(FileNotFoundError):
                    os.unlink(replacement)

    def populate(self, handle: BinaryIO | None = None) -> bool:
        """
        Parse the message and fill the header and MIME-part caches.

        Args:
            handle: An open binary file to read instead of our path.

        Returns:
            True if the message parsed. On failure the error hook has been
            called and both caches are left empty.
        """
        self._headers = {}
        self._root = None

        if handle is not None:
            data = handle.read()
        else:
            data = self._read_source()
            if data is None:
                return False

        parsed = mime.parse_bytes(data)
        if parsed is None:
            self.context.report_error(f"Failed to populate message: {self._path}")
            return False

        self._headers = mime.collect_headers(parsed)
        self._root = mime.build_part(parsed, iconv=self.context.config.mime.iconv)
        return True

    def invalidate(self) -> None:
        """Forget the parsed headers and parts so they're re-read next time."""
        self._headers = None
        self._root = None

    def headers(self) -> dict[str, str]:
        """All headers: lower-cased name -> decoded value."""
        if self._headers is None:
            self.populate()
        return dict(self._headers)

    def header(self, name: str) -> str:
        """
        The value of one header, or "" if absent.

        Example:
            >>> message.header("Subject")
            'Quarterly report'
        """
        if self._headers is None:
            self.populate()
        return self._headers.get(name.lower(), "")

    def part_tree(self) -> MessagePart | None:
        """The root MIME part, or None if the message couldn't be parsed."""
        if self._headers is None:
            self.populate()
        return self._root

    def parts(self) -> list[MessagePart]:
        """Every MIME part, depth-first, root included."""
        root = self.part_tree()
        if root is None:
            return []
        return list(root.walk())

    def attachments(self) -> list[MessagePart]:
        """Parts that carry a filename."""
        return [part for part in self.parts() if part.is_attachment]

    def add_attachments(self, files: list[str | Path]) -> bool:
        """
        Attach files to this (single-part, composed) message on disk.

        The message must not already be multipart/mixed; that is the
        caller's responsibility, and a failed rewrite is reported.

        Returns:
            True if the message was rewritten.
        """
        if not files:
            return False

        try:
            mime.add_attachments(
                Path(self.path),
                [Path(f) for f in files],
                self.context.config.general.tmp_path,
            )
        except (OSError, ValueError) as e:
            self.context.report_error(f"Failed to add attachments to {self.path}: {e}")
            return False

        self.invalidate()
        return True

    def date(self) -> float:
        """
        The Date header as seconds since the epoch.

        Falls back to the file's mtime for local messages (0 for remote
        ones) when the header is missing or unparseable.
        """
        value = self.header("date")
        if value:
            try:
                return email.utils.parsedate_to_datetime(value).timestamp()
            except (TypeError, ValueError, IndexError, OverflowError):
                logger.debug(f"Unparseable Date header in {self._path}: {value!r}")
        return float(self.mtime()) if self.is_local else 0.0

    def __repr__(self) -> str:
        return f"{type(self).__name__}(path={self._path!r})"


class LocalMessage(Message):
    """
    A message stored as a file in a local Maildir.

    Example:
        >>> msg = LocalMessage("/home/user/Maildir/INBOX/new/1700000000.1.host", ctx)
        >>> msg.get_flags()
        'N'
        >>> msg.mark_read()
        True
        >>> msg.path
        '/home/user/Maildir/INBOX/cur/1700000000.1.host:2,S'
    """

    backend = Backend.LOCAL

    @property
    def in_new(self) -> bool:
        """Is the file in a new/ directory?"""
        return Path(self._path).parent.name == "new"

    @staticmethod
    def _split_name(name: str) -> tuple[str, str]:
        """Split a filename into (base, flag-suffix)."""
        offset = name.find(FLAG_SEPARATOR)
        if offset == -1:
            return name, ""
        return name[:offset], name[offset + len(FLAG_SEPARATOR):]

    def get_flags(self) -> str:
        """
        Flags from the filename suffix.

        Anything in new/ also gets "N", whatever its suffix says.
        """
        if not self._path:
            return ""
        _, flags = self._split_name(os.path.basename(self._path))
        if self.in_new:
            flags += "N"
        return canonical_flags(flags)

    def _effective_flags(self, flags: str) -> str:
        # "N" is implied by the directory, not stored in the name
        if self.in_new:
            return canonical_flags(flags + "N")
        return flags

    def _rename(self, destination: str) -> bool:
        """Move the file, updating our path only if that worked."""
        if destination == self._path:
            return False
        try:
            os.rename(self._path, destination)
        except OSError as e:
            self.context.report_error(
                f"Failed to rename {self._path} to {destination}: {e.strerror}"
            )
            return False
        logger.debug(f"Renamed {self._path} -> {destination}")
        self._path = destination
        return True

    def _write_flags(self, flags: str) -> bool:
        directory, name = os.path.split(self._path)
        base, _ = self._split_name(name)
        return self._rename(os.path.join(directory, f"{base}{FLAG_SEPARATOR}{flags}"))

    def mark_read(self) -> bool:
        """
        Mark as read.

        A message in new/ moves to cur/ and gains "S" in the same rename;
        elsewhere "N" is dropped and "S" added.
        """
        with self._tracking_unread():
            directory, name = os.path.split(self._path)
            base, suffix = self._split_name(name)
            flags = canonical_flags(suffix.upper().replace("N", "") + "S")

            if self.in_new:
                directory = os.path.join(os.path.dirname(directory), "cur")
                return self._rename(os.path.join(directory, f"{base}{FLAG_SEPARATOR}{flags}"))

            if flags == self.get_flags():
                return True
            return self._write_flags(flags)

    def mark_unread(self) -> bool:
        """Mark as unread by dropping "S"."""
        with self._tracking_unread():
            if not self.has_flag("S"):
                return True
            _, suffix = self._split_name(os.path.basename(self._path))
            return self._write_flags(canonical_flags(suffix.replace("S", "")))

    def unlink(self) -> bool:
        """Delete the file."""
        was_new = self.is_new()
        try:
            os.remove(self._path)
        except OSError as e:
            self.context.report_error(f"Failed to delete {self._path}: {e.strerror}")
            return False

        folder = self.parent
        if folder is not None:
            folder.note_removed(was_new)
        return True

    def mtime(self) -> int:
        """The file's modification time, or 0 if it can't be read."""
        try:
            return int(os.stat(self._path).st_mtime)
        except OSError:
            return 0


class RemoteMessage(Message):
    """
    A message in a remote IMAP folder.

    Attributes:
        remote_id: The proxy's identifier for the message.
        folder: Name of the remote folder holding it.
        revision: Bumped on every change we push to the server. Remote
                  flags can't be read back from disk, so this is what
                  tells caches the message changed.

    Example:
        >>> msg = RemoteMessage(cache_path, ctx, remote_id=42, folder="INBOX", flags="S")
        >>> msg.mark_unread()   # sends "mark_unread 42 INBOX"
        True
        >>> msg.get_flags()
        'N'
    """

    backend = Backend.REMOTE

    def __init__(
        self,
        path: str | Path,
        context: "Context",
        *,
        remote_id: int,
        folder: str,
        flags: str = "",
        parent: "Maildir | None" = None,
    ) -> None:
        super().__init__(path, context, parent)
        self.remote_id = remote_id
        self.folder = folder
        self._flags = canonical_flags(flags)
        self.revision = 0

    def _send(self, command: str) -> str | None:
        """Send "<command> <id> <folder>" to the proxy."""
        proxy = self.context.proxy
        if proxy is None:
            self.context.report_error(f"No IMAP proxy available for: {command} {self.remote_id}")
            return None
        try:
            return proxy.send(f"{command} {self.remote_id} {self.folder}")
        except ProxyError as e:
            self.context.report_error(f"IMAP proxy failed on {command} {self.remote_id}: {e}")
            return None

    @property
    def path(self) -> str:
        """The local cache file, fetched from the server on first use."""
        self.lazy_load()
        return self._path

    def lazy_load(self) -> bool:
        """
        Make sure the body is in the cache file.

        Once fetched the cached copy is used forever; remote messages
        don't change.

        Returns:
            True if the cache file exists afterwards.
        """
        if os.path.exists(self._path):
            return True

        body = self._send("get_message")
        if body is None:
            return False

        try:
            os.makedirs(os.path.dirname(self._path) or ".", exist_ok=True)
            with open(self._path, "a", encoding="utf-8") as f:
                f.write(body)
        except OSError as e:
            self.context.report_error(f"Failed to cache message {self.remote_id}: {e}")
            return False
        return True

    def get_flags(self) -> str:
        return self._flags

    def _write_flags(self, flags: str) -> bool:
        # Remote flags only change through mark_read() / mark_unread()
        logger.debug(f"Ignoring direct flag change on remote message {self.remote_id}")
        return False

    def _swap(self, remove: str, add: str) -> None:
        """Update in-memory flags after the server accepted a change."""
        self._flags = canonical_flags(self._flags.replace(remove, "") + add)
        self.revision += 1
        folder = self.parent
        if folder is not None:
            folder.bump_mtime()

    def mark_read(self) -> bool:
        with self._tracking_unread():
            if self._send("mark_read") is None:
                return False
            self._swap("N", "S")
        return True

    def mark_unread(self) -> bool:
        with self._tracking_unread():
            if self._send("mark_unread") is None:
                return False
            self._swap("S", "N")
        return True

    def unlink(self) -> bool:
        was_new = self.is_new()
        if self._send("delete_message") is None:
            return False

        folder = self.parent
        if folder is not None:
            folder.bump_mtime()
            folder.note_removed(was_new)
        return True

    def mtime(self) -> int:
        return self.revision

    def __repr__(self) -> str:
        return (
            f"RemoteMessage(id={self.remote_id}, folder={self.folder!r}, "
            f"flags={self._flags!r})"
        )
