"""
Tests for the command line entry point.

Tests:
- Credential prompts and hash-password output
- Configuration failures
- run_session on both ends of a socket pair
- client and server commands through main()
"""

import io
import socket
import threading
from pathlib import Path

import pytest

from securecomm import main as cli
from securecomm.auth import Credentials, PasswordHasher_
from securecomm.config import RuntimeContext
from securecomm.integration.event_logger import EventType
from securecomm.messaging.duplex import Display, QueueMessageSource
from securecomm.messaging.session import SessionEstablisher
from securecomm.messaging.transport import SocketStream


CONFIG_TEMPLATE = """\
server_address: 127.0.0.1
server_port: 5555
log_level: DEBUG
log_file_path: ""
nonce_strategy: {nonce_strategy}
"""


class RecordingEstablisher(SessionEstablisher):
    """Keeps every session it hands out."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.sessions = []

    def establish(self, credentials, exchange):
        session = super().establish(credentials, exchange)
        self.sessions.append(session)
        return session


class IsolatedContext(RuntimeContext):
    """RuntimeContext whose logger does not touch the shared 'securecomm' logger."""

    @classmethod
    def create(cls, config, name="securecomm.test.cli", stream=None):
        return super().create(config, name=name, stream=io.StringIO())


def write_config(tmp_path: Path, nonce_strategy: str = "random") -> str:
    path = tmp_path / "securecomm.yaml"
    path.write_text(CONFIG_TEMPLATE.format(nonce_strategy=nonce_strategy))
    return str(path)


def serve_in_background(context, stream, establisher, results):
    """Run the far end of a connection until the near end quits."""
    def serve():
        results["code"] = cli.run_session(
            context, stream, Credentials("user", "pass"), establisher,
            Display(output=io.StringIO(), peer_label="Client"),
            source=QueueMessageSource(),
        )

    thread = threading.Thread(target=serve, daemon=True)
    thread.start()
    return thread


class TestCredentialsAndHashing:
    """Tests for prompts and the hash-password command."""

    def test_read_credentials(self):
        """Username is stripped; the password prompt is separate."""
        prompts = []

        def fake_input(prompt):
            prompts.append(prompt)
            return "  alice \n"

        creds = cli.read_credentials(fake_input, lambda prompt: "s3cret")

        assert creds == Credentials("alice", "s3cret")
        assert prompts == ["Username: "]

    def test_hash_password_prints_users_entry(self, monkeypatch, capsys):
        """With --username the output is a ready users-file entry."""
        answers = iter(["Str0ng!Pass", "Str0ng!Pass"])
        monkeypatch.setattr(cli.getpass, "getpass", lambda prompt="": next(answers))

        assert cli.main(["hash-password", "--username", "alice"]) == 0

        out = capsys.readouterr().out.strip()
        name, encoded = out.split(": ", 1)
        assert name == "alice"
        assert PasswordHasher_().verify_password("Str0ng!Pass", encoded.strip('"'))

    def test_hash_password_mismatch(self, monkeypatch, capsys):
        """Differing confirmation exits with status 1."""
        answers = iter(["first", "second"])
        monkeypatch.setattr(cli.getpass, "getpass", lambda prompt="": next(answers))

        assert cli.main(["hash-password"]) == 1
        assert "do not match" in capsys.readouterr().err

    def test_hash_password_empty(self, monkeypatch, capsys):
        """An empty password is refused with a message, not a traceback."""
        monkeypatch.setattr(cli.getpass, "getpass", lambda prompt="": "")

        assert cli.main(["hash-password"]) == 1
        assert "must not be empty" in capsys.readouterr().err


class TestConfigurationErrors:
    """Tests for start-up failures."""

    def test_missing_config_exits_nonzero(self, tmp_path, capsys):
        """A missing config file is reported on stderr."""
        code = cli.main(["--config", str(tmp_path / "absent.yaml"), "client"])

        assert code == 1
        assert "Failed to load configuration" in capsys.readouterr().err

    def test_command_required(self):
        """A subcommand is mandatory."""
        with pytest.raises(SystemExit):
            cli.main([])


class TestRunSession:
    """Tests for establishment, chat and teardown over a real socket pair."""

    @pytest.mark.parametrize("nonce_strategy", ["random", "counter"])
    def test_both_ends_close_cleanly(self, monkeypatch, tmp_path, nonce_strategy):
        """A message crosses, the client quits and both sessions are terminated."""
        config = cli.load_configuration(write_config(tmp_path, nonce_strategy))
        context = RuntimeContext.for_testing(config)
        establisher = RecordingEstablisher(context=context)

        sock_a, sock_b = socket.socketpair()
        stream_a, stream_b = SocketStream(sock_a), SocketStream(sock_b)
        results = {}
        server = serve_in_background(context, stream_b, establisher, results)

        monkeypatch.setattr("sys.stdin", io.StringIO("hello\nexit\n"))
        client_output = io.StringIO()
        code = cli.run_session(
            context, stream_a, Credentials("user", "pass"), establisher,
            Display(output=client_output, peer_label="Server"),
        )
        server.join(timeout=10)

        assert code == 0
        assert results == {"code": 0}
        assert len(establisher.sessions) == 2
        assert all(session.is_terminated for session in establisher.sessions)
        assert stream_a.closed and stream_b.closed

        terminated = context.events.get_events_by_type(EventType.SESSION_TERMINATED)
        assert len(terminated) == 2
        received = context.events.get_events_by_type(EventType.MESSAGE_RECEIVED)
        assert len(received) == 1

    def test_failed_establishment_returns_one(self):
        """Rejected credentials end the session attempt with status 1."""
        context = RuntimeContext.for_testing()
        sock_a, sock_b = socket.socketpair()
        stream_a = SocketStream(sock_a)

        try:
            code = cli.run_session(
                context, stream_a, Credentials("user", "wrong"),
                SessionEstablisher(context=context),
                Display(output=io.StringIO()),
            )
        finally:
            sock_b.close()

        assert code == 1
        assert stream_a.closed
        assert context.events.get_events_by_type(EventType.AUTH_FAILED)
        assert not context.events.get_events_by_type(EventType.SESSION_TERMINATED)


class TestCommands:
    """Tests for the client and server commands through main()."""

    def test_client_command(self, monkeypatch, tmp_path, capsys):
        """client connects, chats and exits 0 when the user types exit."""
        sock_a, sock_b = socket.socketpair()
        stream_a, stream_b = SocketStream(sock_a), SocketStream(sock_b)
        far_context = RuntimeContext.for_testing()
        results = {}
        server = serve_in_background(
            far_context, stream_b, SessionEstablisher(context=far_context), results
        )

        monkeypatch.setattr(cli, "RuntimeContext", IsolatedContext)
        monkeypatch.setattr(cli, "read_credentials", lambda: Credentials("user", "pass"))
        monkeypatch.setattr(cli, "connect", lambda address, port: stream_a)
        monkeypatch.setattr("sys.stdin", io.StringIO("hi there\nexit\n"))

        code = cli.main(["--config", write_config(tmp_path), "client"])
        server.join(timeout=10)

        assert code == 0
        assert results == {"code": 0}
        assert "Connected. Type 'exit' to quit." in capsys.readouterr().out
        assert far_context.events.get_events_by_type(EventType.MESSAGE_RECEIVED)

    def test_server_rejects_operator_credentials(self, monkeypatch, tmp_path, capsys):
        """Bad operator credentials exit 1 before the server listens."""
        listened = []
        monkeypatch.setattr(cli, "RuntimeContext", IsolatedContext)
        monkeypatch.setattr(cli, "read_credentials", lambda: Credentials("user", "wrong"))
        monkeypatch.setattr(cli, "listen", lambda *args, **kwargs: listened.append(args))

        code = cli.main(["--config", write_config(tmp_path), "server"])

        assert code == 1
        assert listened == []
        assert "Authentication failed" in capsys.readouterr().err
