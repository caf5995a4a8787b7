# =============================================================================
# Tests for message threading and sorting
# =============================================================================

import itertools
import os

import pytest

from kestrel.core import LocalMessage
from kestrel.threads import (
    Threader,
    compare_by_date,
    compare_by_subject,
    compare_none,
    get_comparator,
    normalize_subject,
    references,
    sort_messages,
    thread,
)


def at(hour: int) -> str:
    return f"Mon, 15 Jan 2024 {hour:02d}:00:00 +0000"


def shape(container):
    """(subject or None, [children...]) for easy comparison."""
    subject = container.message.header("subject") if container.message else None
    return (subject, [shape(child) for child in container.children])


@pytest.fixture
def mail(make_maildir, write_message, context):
    """Factory for messages in a scratch Maildir, in arrival order."""
    inbox = make_maildir("INBOX")
    counter = itertools.count(1)

    def _mail(subject, msgid=None, refs=None, reply_to=None, hour=9, unread=False):
        n = next(counter)
        if unread:
            path = os.path.join(inbox.path, "new", f"{n}.test.host")
        else:
            path = os.path.join(inbox.path, "cur", f"{n}.test.host:2,S")
        write_message(
            path,
            subject=subject,
            message_id=msgid,
            references=refs,
            in_reply_to=reply_to,
            date=at(hour),
        )
        return LocalMessage(path, context, parent=inbox)

    # Keep the folder alive for the messages' weak parent references
    _mail.folder = inbox
    return _mail


class TestSubjects:

    @pytest.mark.parametrize(
        "subject, expected",
        [
            ("Widget issue", "widget issue"),
            ("Re: Widget issue", "widget issue"),
            ("RE: re: Widget issue", "widget issue"),
            ("Re[2]: Widget issue", "widget issue"),
            ("Fwd: Re: Widget issue  ", "widget issue"),
            ("Regarding widgets", "regarding widgets"),
        ],
    )
    def test_normalize_subject(self, subject, expected):
        assert normalize_subject(subject) == expected

    def test_references_include_in_reply_to(self, mail):
        message = mail("x", msgid="3@x", refs="<1@x> <2@x>", reply_to="<9@x>")
        assert references(message) == ["1@x", "2@x", "9@x"]

    def test_in_reply_to_not_duplicated(self, mail):
        message = mail("x", msgid="3@x", refs="<1@x> <2@x>", reply_to="<2@x>")
        assert references(message) == ["1@x", "2@x"]

    def test_in_reply_to_uses_last_id(self, mail):
        message = mail("x", msgid="10@x", refs="<1@x>", reply_to="<7@x> <9@x>")
        assert references(message) == ["1@x", "9@x"]

    def test_in_reply_to_alone_uses_last_id(self, mail):
        message = mail("x", msgid="10@x", reply_to="<7@x> <9@x>")
        assert references(message) == ["9@x"]


class TestThreading:

    def test_reply_under_parent(self, mail):
        a = mail("Hello", msgid="1@x")
        b = mail("Re: Hello", msgid="2@x", refs="<1@x>")

        roots = thread([a, b])

        assert len(roots) == 1
        assert roots[0].message is a
        assert [c.message for c in roots[0].children] == [b]
        assert roots[0].children[0].parent is roots[0]

    def test_reply_arriving_first(self, mail):
        b = mail("Re: Hello", msgid="2@x", reply_to="<1@x>")
        a = mail("Hello", msgid="1@x")

        roots = thread([b, a])

        assert [shape(r) for r in roots] == [("Hello", [("Re: Hello", [])])]

    def test_message_without_id_is_own_root(self, mail):
        a = mail("Hello", msgid="1@x")
        orphan = mail("Something else", refs="<1@x>")

        roots = thread([a, orphan])

        assert [r.message for r in roots] == [a, orphan]
        assert roots[0].children == []

    def test_mutual_references_terminate(self, mail):
        a = mail("Ping", msgid="1@x", refs="<2@x>")
        b = mail("Pong", msgid="2@x", refs="<1@x>")

        roots = thread([a, b])

        assert len(roots) == 1
        assert len(roots[0].children) == 1
        assert {roots[0].message, roots[0].children[0].message} == {a, b}

    def test_self_reference_ignored(self, mail):
        a = mail("Loop", msgid="1@x", refs="<1@x>")
        roots = thread([a])
        assert [shape(r) for r in roots] == [("Loop", [])]

    def test_missing_middle_is_pruned(self, mail):
        a = mail("Plan", msgid="1@x")
        c = mail("Re: Plan", msgid="3@x", refs="<1@x> <2@x>")

        roots = thread([a, c])

        assert [shape(r) for r in roots] == [("Plan", [("Re: Plan", [])])]

    def test_missing_parent_promotes_only_child(self, mail):
        b = mail("Re: Lost", msgid="5@x", refs="<99@x>")
        roots = thread([b])
        assert len(roots) == 1
        assert roots[0].message is b
        assert roots[0].parent is None

    def test_missing_parent_with_siblings_stays_empty(self, mail):
        b = mail("Re: Lost", msgid="5@x", refs="<99@x>", hour=9)
        c = mail("Re: Lost", msgid="6@x", refs="<99@x>", hour=10)

        roots = thread([b, c])

        assert [shape(r) for r in roots] == [(None, [("Re: Lost", []), ("Re: Lost", [])])]

    def test_reply_grouped_by_subject(self, mail):
        original = mail("Widget issue", msgid="1@x")
        reply = mail("Re: Widget issue", msgid="2@x")

        roots = thread([original, reply])

        assert len(roots) == 1
        assert roots[0].message is original
        assert [c.message for c in roots[0].children] == [reply]

    def test_reply_first_still_grouped_under_original(self, mail):
        reply = mail("Re: Widget issue", msgid="2@x")
        original = mail("Widget issue", msgid="1@x")

        roots = thread([reply, original])

        assert [shape(r) for r in roots] == [("Widget issue", [("Re: Widget issue", [])])]

    def test_same_subject_oldest_becomes_root(self, mail):
        later = mail("Lunch", msgid="10@x", hour=10)
        earlier = mail("Lunch", msgid="11@x", hour=9)

        roots = thread([later, earlier])

        assert len(roots) == 1
        assert roots[0].message is earlier
        assert [c.message for c in roots[0].children] == [later]

    def test_empty_subjects_not_grouped(self, mail):
        a = mail("", msgid="1@x")
        b = mail("", msgid="2@x")
        assert len(thread([a, b])) == 2

    def test_roots_in_arrival_order(self, mail):
        first = mail("Alpha", msgid="1@x")
        second = mail("Beta", msgid="2@x")
        third = mail("Gamma", msgid="3@x")

        roots = thread([first, second, third])

        assert [r.message for r in roots] == [first, second, third]

    def test_duplicate_message_id_keeps_later(self, mail):
        first = mail("Copy one", msgid="1@x")
        second = mail("Copy two", msgid="1@x")

        threader = Threader()
        roots = threader.thread([first, second])

        assert [r.message for r in roots] == [second]
        assert threader.overridden == [first]

    def test_messages_are_not_modified(self, mail):
        a = mail("Hello", msgid="1@x")
        b = mail("Re: Hello", msgid="2@x", refs="<1@x>")
        paths = (a.path, b.path)

        thread([a, b])

        assert (a.path, b.path) == paths
        assert a.parent is mail.folder


class TestSorting:

    def test_sort_messages_by_date(self, mail):
        late = mail("Late", msgid="1@x", hour=12)
        early = mail("Early", msgid="2@x", hour=8)
        assert sort_messages([late, early], compare_by_date) == [early, late]

    def test_sort_by_subject_ignores_prefixes(self, mail):
        b = mail("Re: beta", msgid="1@x")
        a = mail("Alpha", msgid="2@x")
        assert sort_messages([b, a], compare_by_subject) == [a, b]

    def test_compare_none_keeps_order(self, mail):
        messages = [mail("B", msgid="1@x"), mail("A", msgid="2@x")]
        assert sort_messages(messages, compare_none) == messages

    def test_get_comparator(self):
        assert get_comparator("date") is compare_by_date
        assert get_comparator(" Subject ") is compare_by_subject
        assert get_comparator("bogus") is compare_none

    def test_sort_forest(self, mail):
        root_late = mail("Late", msgid="1@x", hour=12)
        root_early = mail("Early", msgid="2@x", hour=8)
        reply_b = mail("Re: Early", msgid="3@x", refs="<2@x>", hour=11)
        reply_a = mail("Re: Early", msgid="4@x", refs="<2@x>", hour=10)

        threader = Threader()
        roots = threader.sort(threader.thread([root_late, root_early, reply_b, reply_a]), compare_by_date)

        assert [r.message for r in roots] == [root_early, root_late]
        assert [c.message for c in roots[0].children] == [reply_a, reply_b]

    def test_promote_unread_moves_threads_last(self, mail):
        unread_thread = mail("Unread", msgid="1@x", hour=8, unread=True)
        read_late = mail("Read late", msgid="2@x", hour=12)
        read_early = mail("Read early", msgid="3@x", hour=9)

        threader = Threader()
        roots = threader.sort(
            threader.thread([unread_thread, read_late, read_early]),
            compare_by_date,
            promote_unread=True,
        )

        assert [r.message for r in roots] == [read_early, read_late, unread_thread]

    def test_unread_reply_counts_for_thread(self, mail):
        parent = mail("Topic", msgid="1@x", hour=8)
        mail("Re: Topic", msgid="2@x", refs="<1@x>", hour=9, unread=True)
        other = mail("Other", msgid="3@x", hour=10)

        messages = mail.folder.messages()
        threader = Threader()
        roots = threader.sort(threader.thread(messages), compare_by_date, promote_unread=True)

        assert [r.message.path for r in roots] == [other.path, parent.path]
        assert roots[1].has_unread()
