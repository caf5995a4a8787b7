# =============================================================================
# MIME Parsing and Rewriting
# =============================================================================
# Turns raw message bytes into the two things the rest of Kestrel wants:
#
#   1. A flat header map: lower-cased names -> RFC 2047 decoded values
#   2. A tree of MessagePart objects mirroring the MIME structure
#
# Parsing uses the standard library's email package. It is very forgiving,
# so "failure" here means it recovered no headers at all. That happens with
# files that start with a line of junk (a stray mbox separator, a
# delivery-agent banner, ...). For those we skip the first two lines and
# try once more before giving up.
#
# This module also knows how to add attachments to a composed message by
# rewriting it as multipart/mixed.
# =============================================================================

import email
import email.errors
import email.header
import email.policy
import logging
import mimetypes
import os
import shutil
import tempfile
from email.encoders import encode_base64
from email.generator import BytesGenerator
from email.message import Message as EmailMessage
from email.mime.base import MIMEBase
from pathlib import Path

from kestrel.core.part import MessagePart

logger = logging.getLogger(__name__)

# How far we are willing to scan for the two newlines to skip when
# retrying a failed parse.
SKIP_LIMIT = 1024

DEFAULT_BODY_TYPE = "text/plain; charset=UTF-8"


def _decode_8bit(raw: bytes) -> str:
    """Undeclared 8-bit text: UTF-8 if it is valid UTF-8, else latin-1."""
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError:
        return raw.decode("latin-1")


def _decode_chunk(chunk: bytes, charset: str | None) -> str:
    if charset is None:
        # decode_header() hands back unencoded text as raw-unicode-escape bytes
        return chunk.decode("raw-unicode-escape")
    if charset == "unknown-8bit":
        return _decode_8bit(chunk)
    try:
        return chunk.decode(charset, errors="replace")
    except LookupError:
        return chunk.decode("utf-8", errors="replace")


def decode_header_value(value: str | email.header.Header | None) -> str:
    """
    Decode a header value.

    Handles RFC 2047 encoded-words, raw 8-bit (usually UTF-8) text, and
    both mixed in one value.

    Example:
        >>> decode_header_value("=?utf-8?q?caf=C3=A9?=")
        'café'
    """
    if value is None:
        return ""
    if isinstance(value, email.header.Header):
        # The parser wraps headers holding raw 8-bit bytes in a Header
        # labelled unknown-8bit. Recover the text, then decode any
        # encoded-words it contains below.
        value = "".join(
            _decode_chunk(chunk, charset) if isinstance(chunk, bytes) else chunk
            for chunk, charset in email.header.decode_header(value)
        )
    try:
        decoded_parts = email.header.decode_header(value)
    except email.errors.HeaderParseError:
        return value

    result = ""
    for part, charset in decoded_parts:
        if isinstance(part, bytes):
            result += _decode_chunk(part, charset)
        else:
            result += part
    return result


def skip_lines(data: bytes, count: int = 2, limit: int = SKIP_LIMIT) -> bytes:
    """
    Drop everything up to and including the first `count` newlines.

    At most `limit` bytes are scanned, so a file with one enormous first
    line doesn't have us walking the whole thing.
    """
    offset = 0
    end = min(len(data), limit)
    while count > 0 and offset < end:
        if data[offset] == 0x0A:
            count -= 1
        offset += 1
    return data[offset:]


def _parse(data: bytes) -> EmailMessage | None:
    """Parse bytes, returning None unless at least one header was found."""
    try:
        message = email.message_from_bytes(data)
    except (email.errors.MessageError, UnicodeError, ValueError) as e:
        logger.debug(f"Parser raised: {e}")
        return None
    if not message.keys():
        return None
    return message


def parse_bytes(data: bytes) -> EmailMessage | None:
    """
    Parse raw message bytes, retrying once past two lines on failure.

    Returns:
        The parsed message, or None if neither attempt recovered headers.
    """
    message = _parse(data)
    if message is not None:
        return message

    logger.debug("Initial parse found no headers, skipping two lines and retrying")
    return _parse(skip_lines(data))


def collect_headers(message: EmailMessage) -> dict[str, str]:
    """
    Build the header map for a parsed message.

    Names are lower-cased and values decoded. When a header repeats, the
    last occurrence wins.
    """
    headers: dict[str, str] = {}
    for name, value in message.items():
        headers[name.lower()] = decode_header_value(value)
    return headers


def _convert_charset(content: bytes, charset: str) -> bytes:
    """Re-encode content as UTF-8, leaving it untouched if that fails."""
    try:
        return content.decode(charset).encode("utf-8")
    except (LookupError, UnicodeDecodeError) as e:
        logger.debug(f"Charset conversion from {charset} failed: {e}")
        return content


def build_part(source: EmailMessage, *, iconv: bool = False) -> MessagePart:
    """
    Convert one node of a parsed message (and everything below it).

    Three shapes are handled:
        - multipart/*: a pure container, children built recursively
        - message/rfc822: an encapsulated message, kept as its raw bytes
        - anything else: a leaf holding the transfer-decoded content

    Args:
        source: The parsed node.
        iconv: Convert text/plain parts with a declared, non-UTF-8 charset
               to UTF-8.
    """
    content_type = source.get_content_type()

    # get_filename() prefers Content-Disposition "filename" and falls back
    # to Content-Type "name", RFC 2231 continuations included.
    filename = source.get_filename()
    if filename:
        filename = decode_header_value(filename)

    content = b""
    if content_type == "message/partial":
        pass
    elif source.is_multipart() and source.get_content_maintype() == "message":
        inner = source.get_payload()
        if inner:
            content = inner[0].as_bytes()
    elif not source.is_multipart():
        payload = source.get_payload(decode=True)
        if isinstance(payload, bytes):
            content = payload

    if iconv and content_type == "text/plain":
        charset = source.get_content_charset()
        if charset and charset.lower() != "utf-8":
            content = _convert_charset(content, charset)

    part = MessagePart(content_type=content_type, filename=filename or None, content=content)

    if source.is_multipart() and source.get_content_maintype() == "multipart":
        for subpart in source.get_payload():
            part.add_child(build_part(subpart, iconv=iconv))

    return part


def guess_content_type(path: Path) -> str:
    """Guess a file's MIME type, defaulting to application/octet-stream."""
    content_type, _ = mimetypes.guess_type(path.name)
    return content_type or "application/octet-stream"


def _attachment_part(path: Path, policy: email.policy.Policy) -> MIMEBase:
    """Build a base64-encoded attachment part for a file."""
    maintype, subtype = guess_content_type(path).split("/", 1)
    part = MIMEBase(maintype, subtype, policy=policy)
    part.set_payload(path.read_bytes())
    encode_base64(part)
    part.add_header("Content-Disposition", "attachment", filename=path.name)
    return part


def add_attachments(path: Path, attachments: list[Path], tmpdir: Path) -> bool:
    """
    Rewrite a message on disk as multipart/mixed with attachments.

    The existing body becomes the first part of the new container, with its
    Content-* headers and its bytes carried over untouched; each attachment
    follows in order. A message that is already multipart/mixed raises
    ValueError; callers are expected to attach only to single-part drafts.

    The message is read with the modern email policy so 8-bit headers and
    bodies are written back exactly as they were read.

    The rewritten message is serialised to a temporary file first and only
    then copied over the original, so a half-written message never replaces
    a good one.

    Args:
        path: The message file to rewrite.
        attachments: Files to attach.
        tmpdir: Where to create the temporary file.

    Returns:
        True if the message was rewritten.

    Raises:
        OSError: If the message or an attachment cannot be read, or the
                 result cannot be written.
        ValueError: If the message cannot be converted to multipart/mixed.
    """
    with open(path, "rb") as f:
        message = email.message_from_binary_file(f, policy=email.policy.default)

    # Build every attachment before touching the message, so an unreadable
    # file leaves nothing half-done.
    parts = [_attachment_part(Path(name), message.policy) for name in attachments]

    # make_mixed() only moves the body into a part when there is a
    # Content-* header to move with it
    if "Content-Type" not in message:
        message["Content-Type"] = DEFAULT_BODY_TYPE
    if "MIME-Version" not in message:
        message["MIME-Version"] = "1.0"
    message.make_mixed()
    for part in parts:
        message.attach(part)

    fd, tmp_name = tempfile.mkstemp(prefix="kestrel", dir=tmpdir)
    try:
        with os.fdopen(fd, "wb") as out:
            BytesGenerator(out, mangle_from_=False).flatten(message)
        shutil.copyfile(tmp_name, path)
    finally:
        os.unlink(tmp_name)

    logger.debug(f"Added {len(parts)} attachment(s) to {path}")
    return True
