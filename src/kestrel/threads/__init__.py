# =============================================================================
# Kestrel Threads Module
# =============================================================================
# Conversation threading and sort orders for the message index:
#   - Threader / ThreadContainer: build reply trees from message headers
#   - Comparators: named sort orders for messages and threads
# =============================================================================

from kestrel.threads.threader import (
    ThreadContainer,
    Threader,
    message_id,
    normalize_subject,
    references,
    thread,
)
from kestrel.threads.sorting import (
    COMPARATORS,
    compare_by_date,
    compare_by_file,
    compare_by_from,
    compare_by_subject,
    compare_none,
    get_comparator,
    sort_messages,
)

__all__ = [
    "COMPARATORS",
    "ThreadContainer",
    "Threader",
    "compare_by_date",
    "compare_by_file",
    "compare_by_from",
    "compare_by_subject",
    "compare_none",
    "get_comparator",
    "message_id",
    "normalize_subject",
    "references",
    "sort_messages",
    "thread",
]
