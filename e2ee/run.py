import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from .config import Config
from .console import ConsolePrinter, ConsoleSource, describe_error, describe_result
from .crypto import OAEP_HASHES
from .errors import E2EEError
from .node import InitiatorNode, ResponderNode
from .session import SessionResult
from .utils import setup_logging

"""
run.py — single entry point: pick server or client and start chatting.

Quick examples:
  Server:  python -m e2ee.run --mode server --port 12345
  Client:  python -m e2ee.run --mode client --host 127.0.0.1 --port 12345
  Short:   python -m e2ee.run server 12345
           python -m e2ee.run client 127.0.0.1 12345
  Prompt:  python -m e2ee.run            (asks for mode, IP and port)

Type /exit (or send EOF) to leave the chat.
"""

LOG = logging.getLogger("e2ee.run")

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2


# -------------------------
# Process runners (thin wrappers)
# -------------------------

async def run_server(config: Config) -> SessionResult:
    """Wait for one client, exchange keys, then chat until someone leaves."""
    printer = ConsolePrinter("Server", "Client")
    source = ConsoleSource(prompt=printer.prompt, exit_command=config.exit_command)
    node = ResponderNode(config)
    await node.start()
    print(f"[Server] Waiting for a client on port {node.port}...")
    return await node.serve(
        source,
        printer.message,
        on_lost=printer.lost,
        on_ready=lambda: _ready("Server", source),
    )


async def run_client(config: Config) -> SessionResult:
    """Connect, send our session key, then chat until someone leaves."""
    printer = ConsolePrinter("Client", "Server")
    source = ConsoleSource(prompt=printer.prompt, exit_command=config.exit_command)
    node = InitiatorNode(config)
    return await node.run(
        source,
        printer.message,
        on_lost=printer.lost,
        on_ready=lambda: _ready("Client", source),
    )


def _ready(label: str, source: ConsoleSource) -> None:
    print(f"[{label}] Secure channel ready. Type /exit to leave.")
    source.start()


# -------------------------
# Argument parsing
# -------------------------

def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="e2ee",
        description="Encrypted point-to-point chat (RSA key exchange, AES-256-CBC messages).",
    )
    p.add_argument("--mode", choices=["server", "client"])
    p.add_argument("--host", help="client: server IP; server: bind address (default 0.0.0.0)")
    p.add_argument("--port", type=int)
    p.add_argument("--exit-command", dest="exit_command", help="line that ends the chat (default /exit)")
    p.add_argument("--oaep-hash", dest="oaep_hash", choices=sorted(OAEP_HASHES))
    p.add_argument(
        "--keep-going",
        action="store_true",
        help="drop messages that fail to decrypt instead of ending the session",
    )
    p.add_argument("--log-level", dest="log_level", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    p.add_argument(
        "target",
        nargs="*",
        help="shorthand: 'server [port]' or 'client <ip> <port>'",
    )
    return p


def _parse_port(p: argparse.ArgumentParser, value: str) -> int:
    try:
        port = int(value)
    except ValueError:
        p.error(f"invalid port: {value!r}")
    if not 0 <= port <= 65535:
        p.error(f"port out of range: {port}")
    return port


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """
    Parse flags plus the positional shorthand. Positional values fill in
    whatever the flags left empty.
    """
    p = build_parser()
    args = p.parse_args(argv)
    target = list(args.target or [])
    if target:
        mode = target.pop(0)
        if mode not in ("server", "client"):
            p.error(f"unknown mode {mode!r}; use server or client")
        if args.mode and args.mode != mode:
            p.error(f"--mode {args.mode} conflicts with positional mode {mode}")
        args.mode = mode
        if mode == "server":
            if len(target) > 1:
                p.error("usage: server [port]")
            if target and args.port is None:
                args.port = _parse_port(p, target[0])
        else:
            if len(target) != 2:
                p.error("usage: client <ip> <port>")
            args.host = args.host or target[0]
            if args.port is None:
                args.port = _parse_port(p, target[1])
    return args


def prompt_args(args: argparse.Namespace, ask=input) -> argparse.Namespace:
    """Interactive fallback when no mode was given at all."""
    mode = ask("Mode (server/client): ").strip().lower()
    if mode not in ("server", "client"):
        raise ValueError(f"Unknown mode: {mode!r}")
    args.mode = mode
    if mode == "client" and not args.host:
        args.host = ask("IP: ").strip()
    if args.port is None:
        raw = ask("Port: ").strip()
        try:
            args.port = int(raw)
        except ValueError:
            raise ValueError(f"Invalid port: {raw!r}") from None
    return args


def load_config(args: argparse.Namespace, environ=None) -> Config:
    return Config.from_env(environ).override(
        host=args.host,
        port=args.port,
        exit_command=args.exit_command,
        oaep_hash=args.oaep_hash,
        stop_on_decrypt_error=False if args.keep_going else None,
        log_level=args.log_level,
    )


# -------------------------
# Main entrypoint
# -------------------------

def main(argv: Optional[List[str]] = None) -> int:
    """Dispatch into the chosen mode; returns the process exit status."""
    args = parse_args(argv)
    try:
        if not args.mode:
            args = prompt_args(args)
        config = load_config(args)
        setup_logging(config.log_level)
    except (ValueError, EOFError) as exc:
        print(f"[Main] {exc}", file=sys.stderr)
        return EXIT_USAGE

    runner = run_server if args.mode == "server" else run_client
    label = "Server" if args.mode == "server" else "Client"
    try:
        result = asyncio.run(runner(config))
    except KeyboardInterrupt:
        print(f"\n[{label}] Interrupted.")
        return EXIT_FAILED
    except (E2EEError, OSError) as exc:
        LOG.debug("Session aborted", exc_info=True)
        print(f"\n[{label}] {describe_error(exc)}", file=sys.stderr)
        return EXIT_FAILED

    print(f"\n[{label}] {describe_result(result)}")
    return EXIT_OK if result.ok else EXIT_FAILED


if __name__ == "__main__":
    sys.exit(main())
