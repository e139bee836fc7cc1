"""
Command-line chat client.

Host a room, or join one by the host's id, and chat from the terminal.
Every message is encrypted under a key agreed with each peer.

Usage::

    python -m mintchat host --listen 0.0.0.0:9000 --advertise 192.168.1.10
    python -m mintchat connect 192.168.1.10:9000

Commands inside the chat:
    /file PATH      Share a file (images and videos are recognized by type)
    /users          List participants
    /fingerprint    Show verification fingerprints, to compare out of band
    /leave, /quit   Leave the chat
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from mintchat.config import CONNECT_TIMEOUT_SECS, NOTIFY_SHORT_MS, ChatConfig
from mintchat.connection import ChatContext, ConnectionManager, ConnectionState, Severity
from mintchat.console import BLUE, GREEN, GREY, RED, RESET, YELLOW, ConsoleUI
from mintchat.errors import ChatError, KeyExchangeError
from mintchat.transport import TcpTransport, parse_address

logger = logging.getLogger(__name__)


class ColoredFormatter(logging.Formatter):
    """
    Compact colored log lines that sit between chat output.

    Shows the time of day, the level, and the component with the package
    prefix stripped, e.g. `14:02:11 WARN  connection.manager: ...`.
    Tracebacks from `logger.exception` are kept.
    """

    LEVEL_STYLES = {
        logging.DEBUG: ("DEBUG", GREY),
        logging.INFO: ("INFO", GREEN),
        logging.WARNING: ("WARN", YELLOW),
        logging.ERROR: ("ERROR", RED),
        logging.CRITICAL: ("FATAL", RED),
    }

    def format(self, record: logging.LogRecord) -> str:
        """Format a record as one colored line, plus any traceback."""
        label, color = self.LEVEL_STYLES.get(record.levelno, (record.levelname, RESET))
        component = record.name.removeprefix("mintchat.")
        line = (
            f"{GREY}{self.formatTime(record, self.datefmt)}{RESET} "
            f"{color}{label:5}{RESET} {BLUE}{component}{RESET}: {record.getMessage()}"
        )
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def setup_logging(verbose: bool = False, no_color: bool = False) -> None:
    """Configure logging for the client with optional colors."""
    # Chat output goes to stdout; logs stay quiet unless asked for.
    level = logging.DEBUG if verbose else logging.WARNING

    handler = logging.StreamHandler()
    handler.setLevel(level)

    if no_color:
        formatter = logging.Formatter(
            "%(asctime)s %(levelname)-5s %(name)s: %(message)s",
            datefmt="%H:%M:%S",
        )
    else:
        formatter = ColoredFormatter(datefmt="%H:%M:%S")

    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.setLevel(level)
    root.addHandler(handler)


async def handle_command(manager: ConnectionManager, ui: ConsoleUI, line: str) -> bool:
    """
    Act on one line of user input.

    Returns:
        False when the user asked to leave.
    """
    command, _, argument = line.partition(" ")
    argument = argument.strip()

    match command:
        case "/leave" | "/quit":
            return False
        case "/file":
            if not argument:
                ui.on_notify("Usage: /file PATH", NOTIFY_SHORT_MS, Severity.WARNING)
            else:
                await manager.send_file(Path(argument).expanduser())
        case "/users":
            for peer_id, user in manager.context.users.items():
                marker = " (host)" if user.is_host else ""
                marker += " (you)" if peer_id == manager.context.local_id else ""
                ui.out.write(f"  {peer_id}{marker}\n")
        case "/fingerprint":
            if not manager.connections:
                ui.on_notify("No peers connected", NOTIFY_SHORT_MS, Severity.WARNING)
            for peer_id in manager.connections:
                try:
                    ui.out.write(f"  {peer_id}: {await manager.fingerprint(peer_id)}\n")
                except KeyExchangeError as e:
                    ui.out.write(f"  {peer_id}: {e.message}\n")
        case _:
            await manager.send_text(line)
    return True


async def run_client(
    room_id: str | None,
    listen: str,
    advertise: str | None,
    timeout: float,
    download_dir: Path | None,
    color: bool,
) -> None:
    """
    Run the chat client until the user leaves or input ends.

    Args:
        room_id: Host id to join. None hosts a new room.
        listen: Local "host:port" to accept peers on.
        advertise: Host part of the id given to peers.
        timeout: Seconds to wait for the host to answer.
        download_dir: Where received attachments are saved.
        color: Whether to color terminal output.
    """
    transport = TcpTransport()
    host, port = parse_address(listen)
    await transport.start(host, port, advertise)

    ui = ConsoleUI(color=color, download_dir=download_dir)
    context = ChatContext(local_id=transport.local_id)
    manager = ConnectionManager(
        transport, ui, context, ChatConfig(connect_timeout_secs=timeout)
    )

    try:
        if room_id is None:
            manager.host()
        else:
            conn = await manager.connect_to(room_id)
            if conn.state is ConnectionState.CLOSED:
                return

        while not ui.home_requested:
            line = await asyncio.to_thread(sys.stdin.readline)
            if not line:
                break
            line = line.strip()
            if line and not await handle_command(manager, ui, line):
                break
    finally:
        if context.in_room:
            await manager.leave()
        await transport.stop()


def main() -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Peer-to-peer encrypted chat",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    subparsers = parser.add_subparsers(dest="mode", required=True)

    host_parser = subparsers.add_parser("host", help="Host a new room")

    connect_parser = subparsers.add_parser("connect", help="Join a room by the host's id")
    connect_parser.add_argument("room_id", help="Host id, as host:port")

    for sub, default_listen in ((host_parser, "0.0.0.0:9000"), (connect_parser, "0.0.0.0:0")):
        sub.add_argument(
            "--listen",
            default=default_listen,
            help=f"Address to accept peers on (default: {default_listen})",
        )
        sub.add_argument(
            "--advertise",
            default=None,
            help="Host name or address peers use to reach us (default: the bound address)",
        )
        sub.add_argument(
            "--timeout",
            type=float,
            default=CONNECT_TIMEOUT_SECS,
            help=f"Seconds to wait for a peer to answer (default: {CONNECT_TIMEOUT_SECS:g})",
        )
        sub.add_argument(
            "--downloads",
            type=Path,
            default=Path("downloads"),
            help="Directory for received files (default: ./downloads)",
        )
        sub.add_argument(
            "-v",
            "--verbose",
            action="store_true",
            help="Enable debug logging",
        )
        sub.add_argument(
            "--no-color",
            action="store_true",
            help="Disable colored output",
        )

    args = parser.parse_args()

    setup_logging(args.verbose, args.no_color)

    try:
        asyncio.run(
            run_client(
                getattr(args, "room_id", None),
                args.listen,
                args.advertise,
                args.timeout,
                args.downloads,
                not args.no_color,
            )
        )
    except KeyboardInterrupt:
        logger.info("Shutting down...")
    except ChatError as e:
        logger.error("%s", e.message)
        sys.exit(1)


if __name__ == "__main__":
    main()
