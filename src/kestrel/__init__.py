# =============================================================================
# Kestrel: A Console Mail Client Core
# =============================================================================
#
#   "Hovers over the Maildir, strikes on the unread."
#
# Kestrel is the engine of a console mail client. It knows how to read
# Maildir folders (local or proxied from a remote IMAP account), how to
# pick messages apart into their MIME parts, and how to stitch messages
# back together into conversation threads.
#
# Features:
#   - Maildir folders with flag state kept in filenames
#   - Remote folders through a line-based IMAP proxy process
#   - MIME part trees with charset conversion and malformed-input recovery
#   - Attachment addition for composed messages
#   - JWZ-style message threading and sorting
#   - XDG Base Directory compliant
#
# =============================================================================

__version__ = "0.1.0"
__author__ = "Kord"
__app_name__ = "kestrel"

# Main entry point - this is what gets called by the 'kestrel' command
from kestrel.app import main

__all__ = ["main", "__version__", "__app_name__"]
