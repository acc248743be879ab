"""
SecureComm - Main Entry Point

    securecomm [--config PATH] client
    securecomm [--config PATH] server
    securecomm hash-password [--username NAME]

The client connects, authenticates, agrees a session key with the server
and then chats until the user types the quit command. The server accepts
connections and runs one duplex channel per connection, each in its own
thread.
"""

import argparse
import getpass
import logging
import sys
import threading
from typing import Optional, Sequence

from .auth import Credentials, PasswordHasher_, create_provider, validate_password_strength
from .config import RuntimeContext, load_configuration
from .errors import ConfigurationError, SecureCommError
from .messaging.duplex import Channel, ConsoleMessageSource, Display, DuplexEngine
from .messaging.frame import FrameCodec, create_nonce_source
from .messaging.framing import create_framing
from .messaging.session import SessionEstablisher
from .messaging.transport import SocketStream, StreamKeyExchange, connect, listen


def read_credentials(input_func=input, password_func=getpass.getpass) -> Credentials:
    """Prompt for a username and a hidden password."""
    username = input_func("Username: ").strip()
    password = password_func("Password: ")
    return Credentials(username, password)


def open_channel(stream, session, config) -> Channel:
    """Bind an established session to a stream using the configured framing."""
    nonce_source = create_nonce_source(config.nonce_strategy, session.nonce_prefix)
    codec = FrameCodec(session.session_key, nonce_source)
    return Channel(stream, codec, create_framing(config.framing), config.read_size)


def run_session(context: RuntimeContext, stream, credentials: Credentials,
                establisher: SessionEstablisher, display: Display,
                source=None) -> int:
    """
    Establish a session over stream and chat until either side stops.

    Args:
        display: Where inbound messages go; the server shares one across
            connections
        source: Outbound messages (console lines if None)

    Returns:
        0 on an orderly close, 1 on a fatal error
    """
    config = context.config
    try:
        session = establisher.establish(credentials, StreamKeyExchange(stream))
    except SecureCommError as exc:
        context.logger.error("Session establishment failed: %s", exc)
        stream.close()
        return 1

    try:
        channel = open_channel(stream, session, config)
        engine = DuplexEngine(
            channel,
            source or ConsoleMessageSource(config.quit_command),
            display,
            context=context,
            principal=session.principal,
        )
        stats = engine.run()
    finally:
        session.terminate()
        context.events.log_session_terminated(session.principal)
        stream.close()

    return 1 if stats.failed else 0


# ============================================================================
# Commands
# ============================================================================

def cmd_client(context: RuntimeContext) -> int:
    config = context.config
    context.logger.info("Client starting...")

    credentials = read_credentials()
    establisher = SessionEstablisher(create_provider(config), context)

    stream = connect(config.server_address, config.server_port)
    context.logger.info("Connected to %s:%d", config.server_address, config.server_port)
    print("Connected. Type '%s' to quit." % config.quit_command)

    return run_session(context, stream, credentials, establisher,
                       Display(peer_label="Server"))


def _handle_connection(context: RuntimeContext, stream: SocketStream,
                       credentials: Credentials, establisher: SessionEstablisher,
                       display: Display) -> None:
    try:
        run_session(context, stream, credentials, establisher, display)
    except Exception:
        context.logger.exception("Connection with %s failed", stream.peer)
        stream.close()


def cmd_server(context: RuntimeContext) -> int:
    config = context.config
    context.logger.info("Server starting...")

    credentials = read_credentials()
    establisher = SessionEstablisher(create_provider(config), context)
    # Check the operator once, before accepting anyone
    establisher.provider.verify(credentials)

    server_sock = listen(config.server_address, config.server_port)
    # One display for every connection keeps console output serialized.
    # Typed lines go to whichever connection reads stdin first.
    display = Display(peer_label="Client")
    context.logger.info("Server listening on %s:%d", config.server_address, config.server_port)

    try:
        while True:
            try:
                client_sock, _ = server_sock.accept()
            except OSError as exc:
                context.logger.warning("Failed to accept connection: %s", exc)
                continue

            stream = SocketStream(client_sock)
            context.logger.info("Accepted connection from %s", stream.peer)
            threading.Thread(
                target=_handle_connection,
                args=(context, stream, credentials, establisher, display),
                name=f"client-{stream.peer}",
                daemon=True,
            ).start()
    except KeyboardInterrupt:
        context.logger.info("Server shutting down")
    finally:
        server_sock.close()
    return 0


def cmd_hash_password(args: argparse.Namespace) -> int:
    password = getpass.getpass("Password: ")
    if not password:
        print("Password must not be empty", file=sys.stderr)
        return 1
    if password != getpass.getpass("Confirm password: "):
        print("Passwords do not match", file=sys.stderr)
        return 1

    report = validate_password_strength(password)
    for error in report['errors']:
        print(f"warning: {error}", file=sys.stderr)

    encoded = PasswordHasher_().hash_password(password)
    if args.username:
        print(f'  {args.username}: "{encoded}"')
    else:
        print(encoded)
    return 0


# ============================================================================
# Entry point
# ============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="securecomm",
        description="Authenticated, encrypted messaging over TCP",
    )
    parser.add_argument(
        "--config",
        help="Configuration file (default: <command>_config.yaml)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("client", help="Connect to a server and chat")
    subparsers.add_parser("server", help="Accept clients and chat with each")

    hash_parser = subparsers.add_parser(
        "hash-password", help="Print an Argon2id hash for a users file"
    )
    hash_parser.add_argument("--username", help="Print as a 'users:' mapping entry")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "hash-password":
        return cmd_hash_password(args)

    config_path = args.config or f"{args.command}_config.yaml"
    try:
        config = load_configuration(config_path)
        context = RuntimeContext.create(config)
    except ConfigurationError as exc:
        print(f"{args.command}: Failed to load configuration: {exc}", file=sys.stderr)
        return 1

    try:
        if args.command == "client":
            return cmd_client(context)
        return cmd_server(context)
    except SecureCommError as exc:
        context.log(logging.ERROR, f"{args.command}: {exc}")
        print(f"{args.command}: {exc} (error code {int(exc.code)})", file=sys.stderr)
        return 1
    finally:
        context.close()


if __name__ == "__main__":
    sys.exit(main())
