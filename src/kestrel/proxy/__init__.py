# =============================================================================
# Proxy Module
# =============================================================================
# The link to the external IMAP proxy process. Remote folders and messages
# are read and changed by sending it one-line commands:
#   - Listing remote folders and their messages
#   - Fetching message bodies on demand
#   - Marking messages read/unread and deleting them
# =============================================================================

from kestrel.proxy.channel import (
    ProxyChannel,
    ProxyProcess,
    ProxyError,
    ProxyStartError,
)

__all__ = [
    "ProxyChannel",
    "ProxyProcess",
    "ProxyError",
    "ProxyStartError",
]
