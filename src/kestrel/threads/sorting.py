# =============================================================================
# Message Sort Orders
# =============================================================================
# cmp-style comparators over two messages, selectable by name from the
# [index] sort setting. They work for flat lists (sort_messages) and for
# thread forests (Threader.sort).
# =============================================================================

import functools
import logging
from typing import Iterable

from kestrel.core import Message
from kestrel.threads.threader import Comparator, normalize_subject

logger = logging.getLogger(__name__)


def _cmp(a, b) -> int:
    return (a > b) - (a < b)


def compare_by_date(a: Message, b: Message) -> int:
    """Oldest first."""
    return _cmp(a.date(), b.date())


def compare_by_subject(a: Message, b: Message) -> int:
    """Alphabetical, ignoring case and "Re:"/"Fwd:" prefixes."""
    return _cmp(normalize_subject(a.header("subject")), normalize_subject(b.header("subject")))


def compare_by_from(a: Message, b: Message) -> int:
    return _cmp(a.header("from").lower(), b.header("from").lower())


def compare_by_file(a: Message, b: Message) -> int:
    """By path; for a Maildir this roughly follows delivery time."""
    return _cmp(str(a.path), str(b.path))


def compare_none(a: Message, b: Message) -> int:
    """Keep the existing order."""
    return 0


COMPARATORS: dict[str, Comparator] = {
    "date": compare_by_date,
    "subject": compare_by_subject,
    "from": compare_by_from,
    "file": compare_by_file,
    "none": compare_none,
}


def get_comparator(name: str) -> Comparator:
    """
    Look up a comparator by its config name.

    Unknown names fall back to "none" with a warning, so a typo in the
    config file leaves the index unsorted rather than failing.
    """
    try:
        return COMPARATORS[name.strip().lower()]
    except KeyError:
        logger.warning(f"Unknown sort order {name!r}, leaving messages unsorted")
        return compare_none


def sort_messages(messages: Iterable[Message], compare: Comparator) -> list[Message]:
    """Return the messages sorted by a comparator (stable)."""
    return sorted(messages, key=functools.cmp_to_key(compare))
