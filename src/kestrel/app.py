# =============================================================================
# Kestrel Command Line
# =============================================================================
# A small command-line front end over the core. A full-screen interface can
# be built on the same pieces; this one just prints.
#
#   kestrel folders              List maildirs with unread/total counts
#   kestrel index <maildir>      Print a folder's messages, threaded
#   kestrel parts <file>         Print the MIME structure of a message file
#
# The front end owns:
#   - Configuration loading
#   - Logging setup (a file in the XDG state directory)
#   - Building the Context, and the IMAP proxy when remote folders are used
# =============================================================================

import argparse
import logging
import sys
from pathlib import Path

from kestrel import __version__, __app_name__
from kestrel.config import Config, ConfigError, print_paths
from kestrel.context import Context
from kestrel.core import (
    Backend,
    LocalMessage,
    Maildir,
    Message,
    MessagePart,
    list_maildirs,
    list_remote_folders,
)
from kestrel.proxy import ProxyError, ProxyProcess
from kestrel.threads import Threader, get_comparator, sort_messages

logger = logging.getLogger(__name__)


# =============================================================================
# Setup
# =============================================================================

def setup_logging(debug: bool = False, log_file: Path | None = None) -> None:
    """
    Send log records to the Kestrel log file.

    Args:
        debug: Log at DEBUG instead of INFO.
        log_file: Defaults to kestrel.log in the XDG state directory.
    """
    if log_file is None:
        log_file = Config.log_file_path()
    log_file.parent.mkdir(parents=True, exist_ok=True)

    logging.basicConfig(
        filename=log_file,
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def build_context(config: Config, remote: bool = False) -> Context:
    """
    Build the Context for a command.

    Errors from the core go to stderr as well as the log.

    Raises:
        ProxyError: If remote folders were requested and the proxy
                    can't be started.
    """
    context = Context(
        config=config,
        on_error=lambda text: print(f"error: {text}", file=sys.stderr),
    )

    if remote:
        proxy = ProxyProcess(config.proxy.command, config.proxy_account)
        proxy.start()
        context.proxy = proxy

    return context


# =============================================================================
# Commands
# =============================================================================

def _describe(message: Message) -> str:
    marker = "N" if message.is_new() else " "
    sender = message.header("from") or "(unknown sender)"
    subject = message.header("subject") or "(no subject)"
    return f"{marker} {sender[:30]:<30} {subject}"


def cmd_folders(context: Context, args: argparse.Namespace) -> int:
    """List folders with their unread and total counts."""
    if args.remote:
        folders = list_remote_folders(context)
    else:
        folders = list_maildirs(context.config.general.maildir_path, context)

    for folder in folders:
        print(f"{folder.unread_messages():>6} {folder.total_messages():>6}  {folder.name}")
    return 0


def cmd_index(context: Context, args: argparse.Namespace) -> int:
    """Print the messages of one folder, threaded or flat per config."""
    if args.remote:
        folder = Maildir(args.maildir, context, Backend.REMOTE)
    else:
        path = Path(args.maildir).expanduser()
        if not path.is_absolute() and not path.exists():
            path = context.config.general.maildir_path / path
        folder = Maildir(path, context, prefix=context.config.general.maildir_path)
        if not folder.exists():
            print(f"Not a maildir: {path}", file=sys.stderr)
            return 1

    index = context.config.index
    compare = get_comparator(index.sort)
    messages = folder.messages()

    if not index.threading:
        for message in sort_messages(messages, compare):
            print(_describe(message))
        return 0

    threader = Threader()
    roots = threader.sort(threader.thread(messages), compare, index.promote_unread)
    for root in roots:
        for depth, container in root.walk():
            if container.message is not None:
                print("  " * depth + _describe(container.message))
    return 0


def _print_part(part: MessagePart, depth: int) -> None:
    label = part.content_type
    if part.filename:
        label += f" [{part.filename}]"
    if not part.is_container:
        label += f" ({part.size} bytes)"
    print("  " * depth + label)
    for child in part.children:
        _print_part(child, depth + 1)


def cmd_parts(context: Context, args: argparse.Namespace) -> int:
    """Print the MIME tree of a message file."""
    message = LocalMessage(Path(args.file).expanduser(), context)
    root = message.part_tree()
    if root is None:
        return 1
    _print_part(root, 0)
    return 0


# =============================================================================
# CLI Entry Point
# =============================================================================

def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """
    Parse command-line arguments.

    Returns:
        Parsed arguments namespace.
    """
    parser = argparse.ArgumentParser(
        prog=__app_name__,
        description="Kestrel: a console mail client core",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    parser.add_argument(
        "--paths",
        action="store_true",
        help="Print configuration paths and exit",
    )

    parser.add_argument(
        "--config",
        type=Path,
        help="Path to config file (default: XDG config location)",
    )

    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug mode (verbose logging)",
    )

    commands = parser.add_subparsers(dest="command")

    folders = commands.add_parser("folders", help="List folders")
    folders.add_argument("--remote", action="store_true", help="List IMAP folders via the proxy")
    folders.set_defaults(handler=cmd_folders)

    index = commands.add_parser("index", help="List the messages in a folder")
    index.add_argument("maildir", help="Maildir path, or remote folder name with --remote")
    index.add_argument("--remote", action="store_true", help="Read an IMAP folder via the proxy")
    index.set_defaults(handler=cmd_index)

    parts = commands.add_parser("parts", help="Show the MIME structure of a message file")
    parts.add_argument("file", help="Message file")
    parts.set_defaults(handler=cmd_parts)

    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    """
    Main entry point for Kestrel.

    This function:
        1. Parses command-line arguments
        2. Handles special commands (--paths, --version)
        3. Loads configuration and sets up logging
        4. Runs the chosen subcommand

    Returns:
        Exit code (0 for success, non-zero for errors).
    """
    args = parse_args(argv)

    # Handle --paths flag
    if args.paths:
        print_paths()
        return 0

    if args.command is None:
        print("No command given; try --help", file=sys.stderr)
        return 2

    setup_logging(args.debug)

    try:
        config = Config.load(args.config)
    except ConfigError as e:
        print(f"Config error: {e}", file=sys.stderr)
        return 1

    try:
        context = build_context(config, remote=getattr(args, "remote", False))
    except ProxyError as e:
        print(f"Cannot reach IMAP proxy: {e}", file=sys.stderr)
        return 1

    try:
        return args.handler(context, args)
    finally:
        if context.proxy is not None:
            context.proxy.close()


if __name__ == "__main__":
    sys.exit(main())
