# =============================================================================
# Message Threading
# =============================================================================
# Rebuilds conversations from Message-ID, References and In-Reply-To
# headers, following Jamie Zawinski's algorithm
# (https://www.jwz.org/doc/threading.html):
#
#   1. Give every Message-ID a container; link containers in the order the
#      References header lists them, refusing links that would form a loop
#      or give a container a second parent.
#   2. Containers without a parent form the root set.
#   3. Prune containers that hold no message (placeholders for references
#      we never saw), keeping their children.
#   4. Merge roots that share a subject once "Re:"/"Fwd:" are stripped.
#
# One difference from the textbook version: when subject grouping leaves an
# empty container at the top of a thread, its oldest child takes its place
# if that child is not a reply. That gives the same tree on every run
# instead of a placeholder root.
#
# Containers only live for one thread() call. They point at messages but
# never modify them.
# =============================================================================

import functools
import logging
import re
import weakref
from typing import Callable, Iterable, Iterator

from kestrel.core import Message

logger = logging.getLogger(__name__)

# First <...> token of a header
MESSAGE_ID_PATTERN = re.compile(r"<([^>]+)>")

# Leading "Re:", "Re[2]:", "Fwd:" (any case, repeated) plus whitespace
SUBJECT_PREFIX_PATTERN = re.compile(r"^(?:\s*(?:re(?:\[\d+\])?|fwd?):\s*)+", re.IGNORECASE)

REPLY_PATTERN = re.compile(r"^\s*re(?:\[\d+\])?:", re.IGNORECASE)

# Compares two messages: negative, zero or positive, like the old cmp()
Comparator = Callable[[Message, Message], int]


def normalize_subject(subject: str) -> str:
    """
    Strip reply/forward prefixes and fold case, for grouping.

    Example:
        >>> normalize_subject("Re: Fwd: Widget issue")
        'widget issue'
    """
    return SUBJECT_PREFIX_PATTERN.sub("", subject).strip().lower()


def is_reply_subject(subject: str) -> bool:
    """Does the subject start with "Re:" or "Re[n]:"?"""
    return bool(REPLY_PATTERN.match(subject))


def message_id(message: Message) -> str | None:
    """The first <...> token of the Message-ID header, without brackets."""
    match = MESSAGE_ID_PATTERN.search(message.header("message-id"))
    return match.group(1) if match else None


def references(message: Message) -> list[str]:
    """
    The IDs this message refers to, oldest first.

    That is every ID in References, followed by the last In-Reply-To ID
    when it isn't already the last one. Mailers that list several IDs in
    In-Reply-To put the direct parent last.
    """
    refs = MESSAGE_ID_PATTERN.findall(message.header("references"))
    parents = MESSAGE_ID_PATTERN.findall(message.header("in-reply-to"))
    if parents and (not refs or refs[-1] != parents[-1]):
        refs.append(parents[-1])
    return refs


class ThreadContainer:
    """
    A node in a thread tree.

    A container either holds a message or is an empty placeholder for a
    message we only know from someone's References header.

    Attributes:
        message: The message, or None for a placeholder.
        children: Replies, in order.
    """

    def __init__(self, message: Message | None = None) -> None:
        self.message = message
        self.children: list[ThreadContainer] = []
        self._parent: weakref.ReferenceType | None = None
        self._subject: str | None = None

    @property
    def parent(self) -> "ThreadContainer | None":
        if self._parent is None:
            return None
        return self._parent()

    @property
    def is_empty(self) -> bool:
        return self.message is None

    # -------------------------------------------------------------------------
    # Tree manipulation
    # -------------------------------------------------------------------------

    def has_descendant(self, other: "ThreadContainer") -> bool:
        """Is `other` this container or somewhere below it?"""
        stack = [self]
        while stack:
            node = stack.pop()
            if node is other:
                return True
            stack.extend(node.children)
        return False

    def add_child(self, child: "ThreadContainer") -> None:
        """Append a child, detaching it from any previous parent."""
        previous = child.parent
        if previous is not None:
            previous.remove_child(child)
        child._parent = weakref.ref(self)
        self.children.append(child)

    def remove_child(self, child: "ThreadContainer") -> None:
        self.children = [c for c in self.children if c is not child]
        child._parent = None

    def transfer_children(self, new_parent: "ThreadContainer") -> None:
        """Move all of our children, in order, to the end of new_parent's."""
        for child in self.children:
            child._parent = weakref.ref(new_parent)
            new_parent.children.append(child)
        self.children = []

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    @property
    def representative(self) -> Message | None:
        """Our message, or the first child's when we are a placeholder."""
        if self.message is not None:
            return self.message
        if self.children:
            return self.children[0].representative
        return None

    @property
    def subject(self) -> str:
        """The thread subject, memoised on first use."""
        if self._subject is None:
            message = self.representative
            self._subject = message.header("subject") if message is not None else ""
        return self._subject

    @property
    def normalized_subject(self) -> str:
        return normalize_subject(self.subject)

    def is_reply(self) -> bool:
        return is_reply_subject(self.subject)

    def has_unread(self) -> bool:
        """Is there a new message anywhere in this subtree?"""
        return any(
            node.message is not None and node.message.is_new()
            for _, node in self.walk()
        )

    def walk(self, depth: int = 0) -> Iterator[tuple[int, "ThreadContainer"]]:
        """Yield (depth, container) for this subtree, depth-first."""
        yield depth, self
        for child in self.children:
            yield from child.walk(depth + 1)

    def sort(self, key: Callable) -> None:
        """Recursively sort the children by a key over their messages."""
        for child in self.children:
            child.sort(key)
        self.children.sort(key=lambda c: key(c.representative))

    def __repr__(self) -> str:
        label = "empty" if self.message is None else repr(self.subject)
        return f"ThreadContainer({label}, children={len(self.children)})"


class Threader:
    """
    Builds and sorts thread forests.

    Attributes:
        overridden: Messages dropped from the threads because a later
                    message reused their Message-ID.

    Usage:
        >>> threader = Threader()
        >>> roots = threader.thread(folder.messages())
        >>> roots = threader.sort(roots, compare_by_date, promote_unread=True)
    """

    def __init__(self) -> None:
        self.overridden: list[Message] = []

    def thread(self, messages: Iterable[Message]) -> list[ThreadContainer]:
        """
        Group messages into conversation trees.

        Args:
            messages: Messages in arrival order.

        Returns:
            Root containers, in arrival order.
        """
        id_table: dict[str, ThreadContainer] = {}
        # Every container we create, in creation order
        created: list[ThreadContainer] = []

        for message in messages:
            msgid = message_id(message)

            # Without a Message-ID nothing can refer to it: a thread of its own
            if msgid is None:
                created.append(ThreadContainer(message))
                continue

            container = id_table.get(msgid)
            if container is None:
                container = ThreadContainer(message)
                id_table[msgid] = container
                created.append(container)
            else:
                if container.message is not None:
                    logger.warning(f"Duplicate Message-ID <{msgid}>, keeping the later message")
                    self.overridden.append(container.message)
                container.message = message

            # Link the reference chain, oldest first
            previous: ThreadContainer | None = None
            for ref in references(message):
                current = id_table.get(ref)
                if current is None:
                    current = ThreadContainer()
                    id_table[ref] = current
                    created.append(current)
                if (
                    previous is not None
                    and current.parent is None
                    and not current.has_descendant(previous)
                ):
                    previous.add_child(current)
                previous = current

            # Hang this message under its last reference
            if (
                previous is not None
                and container.parent is None
                and not container.has_descendant(previous)
            ):
                previous.add_child(container)

        roots: list[ThreadContainer] = []
        for container in created:
            if container.parent is None:
                pruned = self._prune_root(container)
                if pruned is not None:
                    roots.append(pruned)

        return self._group_by_subject(roots)

    # -------------------------------------------------------------------------
    # Pruning
    # -------------------------------------------------------------------------

    def _prune_children(self, container: ThreadContainer) -> None:
        """Remove empty containers below `container`, lifting their children."""
        index = 0
        while index < len(container.children):
            child = container.children[index]
            self._prune_children(child)

            if child.message is not None:
                index += 1
                continue

            # Splice the placeholder's children into its slot
            grandchildren = child.children
            child.children = []
            child._parent = None
            for grandchild in grandchildren:
                grandchild._parent = weakref.ref(container)
            container.children[index:index + 1] = grandchildren
            index += len(grandchildren)

    def _prune_root(self, root: ThreadContainer) -> ThreadContainer | None:
        """
        Prune a root's subtree.

        Returns:
            The root to keep: the root itself, its only child when the root
            is an empty placeholder with one child, or None if nothing is
            left.
        """
        self._prune_children(root)
        if root.message is not None:
            return root
        if not root.children:
            return None
        if len(root.children) == 1:
            child = root.children[0]
            root.remove_child(child)
            return child
        return root

    # -------------------------------------------------------------------------
    # Subject grouping
    # -------------------------------------------------------------------------

    def _group_by_subject(self, roots: list[ThreadContainer]) -> list[ThreadContainer]:
        subject_table: dict[str, ThreadContainer] = {}

        # Pick one root per subject, preferring an empty container
        for root in roots:
            subject = root.normalized_subject
            if not subject:
                continue
            target = subject_table.get(subject)
            if target is None or (target.message is not None and root.message is None):
                subject_table[subject] = root

        for root in roots:
            subject = root.normalized_subject
            target = subject_table.get(subject) if subject else None
            if target is None or target is root:
                continue

            if target.message is None and root.message is None:
                root.transfer_children(target)
            elif target.message is None:
                target.add_child(root)
            elif root.message is None:
                root.add_child(target)
                subject_table[subject] = root
            else:
                root_reply = root.is_reply()
                target_reply = target.is_reply()
                if root_reply and not target_reply:
                    target.add_child(root)
                elif target_reply and not root_reply:
                    root.add_child(target)
                    subject_table[subject] = root
                else:
                    parent = ThreadContainer()
                    parent.add_child(target)
                    parent.add_child(root)
                    subject_table[subject] = parent

        # Replace an empty thread root by its oldest child, unless that
        # child is a reply.
        for subject, root in subject_table.items():
            if root.message is not None or not root.children:
                continue
            candidates = [c for c in root.children if c.message is not None]
            if not candidates:
                continue
            oldest = min(candidates, key=lambda c: c.message.date())
            if not oldest.is_reply():
                root.remove_child(oldest)
                root.transfer_children(oldest)
                subject_table[subject] = oldest

        forest: list[ThreadContainer] = []
        emitted: set[str] = set()
        for root in roots:
            subject = root.normalized_subject
            if not subject:
                forest.append(root)
            elif subject not in emitted:
                emitted.add(subject)
                forest.append(subject_table[subject])
        return forest

    # -------------------------------------------------------------------------
    # Sorting
    # -------------------------------------------------------------------------

    def sort(
        self,
        roots: list[ThreadContainer],
        compare: Comparator,
        promote_unread: bool = False,
    ) -> list[ThreadContainer]:
        """
        Sort a forest with a message comparator.

        Children are sorted recursively; roots are compared by their own
        message, or their first child's when they are empty.

        Args:
            roots: Output of thread().
            compare: cmp-style function over two messages.
            promote_unread: Move threads containing a new message to the end,
                            keeping the order within both groups.

        Returns:
            The sorted roots (a new list).
        """
        key = functools.cmp_to_key(compare)
        for root in roots:
            root.sort(key)

        ordered = sorted(roots, key=lambda r: key(r.representative))
        if promote_unread:
            read = [r for r in ordered if not r.has_unread()]
            unread = [r for r in ordered if r.has_unread()]
            ordered = read + unread
        return ordered


def thread(messages: Iterable[Message]) -> list[ThreadContainer]:
    """Thread messages with a throwaway Threader."""
    return Threader().thread(messages)
