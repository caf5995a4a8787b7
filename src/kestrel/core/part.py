# =============================================================================
# Message Part Model
# =============================================================================
# One node of a message's MIME structure. A message body is a tree:
#
#   multipart/mixed                 <- pure container (children, no content)
#   ├── multipart/alternative       <- pure container
#   │   ├── text/plain              <- leaf
#   │   └── text/html               <- leaf
#   └── application/pdf             <- leaf with a filename = attachment
#
# Each part owns its children. The link back to the parent is a weak
# reference, so a cached tree never keeps itself alive through cycles.
# =============================================================================

import weakref
from dataclasses import dataclass, field
from typing import Iterator


@dataclass(eq=False)
class MessagePart:
    """
    A single MIME part of a message.

    Attributes:
        content_type: Lower-cased MIME type (e.g., "text/plain").
        filename: Filename from Content-Disposition or Content-Type. A part
                  carrying a filename is an attachment.
        content: Decoded content bytes. Empty for pure containers.
        children: Nested parts, in the order they appear in the message.

    Example:
        >>> part = MessagePart("application/pdf", "report.pdf", b"%PDF-1.4")
        >>> part.is_attachment
        True
    """

    content_type: str
    filename: str | None = None
    content: bytes = b""
    children: list["MessagePart"] = field(default_factory=list)

    def __post_init__(self) -> None:
        self._parent: weakref.ReferenceType | None = None

    @property
    def parent(self) -> "MessagePart | None":
        """The containing part, or None for the root (or a detached part)."""
        if self._parent is None:
            return None
        return self._parent()

    @property
    def size(self) -> int:
        """Length of the content in bytes."""
        return len(self.content)

    @property
    def is_attachment(self) -> bool:
        """Returns True if this part has a filename."""
        return bool(self.filename)

    @property
    def is_container(self) -> bool:
        """Returns True for parts that only group other parts."""
        return bool(self.children) and not self.content

    def add_child(self, child: "MessagePart") -> None:
        """Append a child part and point it back at us."""
        child._parent = weakref.ref(self)
        self.children.append(child)

    def walk(self) -> Iterator["MessagePart"]:
        """Yield this part and every descendant, depth-first."""
        yield self
        for child in self.children:
            yield from child.walk()

    def text(self, errors: str = "replace") -> str:
        """Content decoded as UTF-8 (for display of text parts)."""
        return self.content.decode("utf-8", errors=errors)

    def __repr__(self) -> str:
        return (
            f"MessagePart(type={self.content_type!r}, filename={self.filename!r}, "
            f"size={self.size}, children={len(self.children)})"
        )
