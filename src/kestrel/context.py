# =============================================================================
# Runtime Context
# =============================================================================
# Everything a Message or Maildir needs from "outside" travels in one
# Context object instead of living in module globals:
#
#   - config:           the loaded Config (iconv, tmpdir, cache paths)
#   - proxy:            the channel to the IMAP proxy, if remote folders
#                       are in use
#   - on_error:         called with a human-readable message whenever a
#                       core operation fails
#   - message_replace:  given a message path, may return another file to
#                       parse instead (e.g. a decrypted copy); that file is
#                       deleted once parsing is done
#
# A front end builds one Context at startup and passes it down.
# =============================================================================

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

from kestrel.config import Config
from kestrel.proxy import ProxyChannel

logger = logging.getLogger(__name__)


@dataclass
class Context:
    """
    Shared collaborators for the core objects.

    Example:
        >>> errors = []
        >>> ctx = Context(on_error=errors.append)
        >>> ctx.report_error("Failed to open the message file")
        >>> errors
        ['Failed to open the message file']
    """
    config: Config = field(default_factory=Config)
    proxy: ProxyChannel | None = None
    on_error: Callable[[str], None] | None = None
    message_replace: Callable[[str], str | None] | None = None

    # Where remote message bodies are cached. None means the XDG default.
    remote_cache: Path | None = None

    @property
    def remote_cache_dir(self) -> Path:
        return self.remote_cache or Config.remote_cache_dir()

    def report_error(self, text: str) -> None:
        """Log an error and pass it on to the error hook, if any."""
        logger.error(text)
        if self.on_error is not None:
            self.on_error(text)

    def replacement_path(self, path: str) -> str | None:
        """Ask the path-rewrite hook for an alternate file to parse."""
        if self.message_replace is None:
            return None
        updated = self.message_replace(path)
        return updated or None
