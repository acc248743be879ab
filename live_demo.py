#!/usr/bin/env python
"""
SECURECOMM LIVE DEMO

Walks through a complete SecureComm conversation between two local peers
joined by a socket pair:
- Authentication and DH key agreement on both sides
- Encrypted messages in both directions through the duplex engine
- A tampered frame being dropped while the channel keeps running
- Session termination and the security audit log

Run with: python live_demo.py [--no-pause]
"""

import argparse
import socket
import sys
import threading
import time

from securecomm.auth import Credentials
from securecomm.config import Config, RuntimeContext
from securecomm.errors import AuthError
from securecomm.messaging.duplex import QUIT, Channel, Display, DuplexEngine, QueueMessageSource
from securecomm.messaging.frame import FrameCodec
from securecomm.messaging.framing import LengthPrefixedFraming
from securecomm.messaging.session import SessionEstablisher
from securecomm.messaging.transport import SocketStream, StreamKeyExchange


PAUSE = True


def print_header(title):
    """Print a formatted section header"""
    print("\n" + "=" * 70)
    print(f"  {title}")
    print("=" * 70)


def print_step(step_num, description):
    """Print a numbered step"""
    print(f"\n  [{step_num}] {description}")


def pause(message="Press ENTER to continue..."):
    """Pause for presenter to explain"""
    if PAUSE:
        print(f"\n  [PAUSE] {message}")
        input()


def establish_both(establisher, stream_a, stream_b):
    """Both peers authenticate and agree a key at the same time."""
    results = {}

    def bob_side():
        results["bob"] = establisher.establish(Credentials("user", "pass"), StreamKeyExchange(stream_b))

    thread = threading.Thread(target=bob_side)
    thread.start()
    alice = establisher.establish(Credentials("user", "pass"), StreamKeyExchange(stream_a))
    thread.join()
    return alice, results["bob"]


def start_engine(context, stream, session, label):
    source = QueueMessageSource()
    codec = FrameCodec(session.session_key)
    channel = Channel(stream, codec, LengthPrefixedFraming())
    display = Display(prompt="", peer_label=f"    {label} received")
    engine = DuplexEngine(channel, source, display, context=context, principal=session.principal)
    result = {}
    thread = threading.Thread(target=lambda: result.update(stats=engine.run()), daemon=True)
    thread.start()
    return source, thread, result


def main():
    global PAUSE
    parser = argparse.ArgumentParser(description="SecureComm live demo")
    parser.add_argument("--no-pause", action="store_true", help="Run without stopping")
    PAUSE = not parser.parse_args().no_pause

    context = RuntimeContext.create(
        Config(server_address="127.0.0.1", server_port=5555, log_level="WARN")
    )
    establisher = SessionEstablisher(context=context)

    print_header("SECURECOMM - AUTHENTICATED ENCRYPTED MESSAGING")
    print("\n  This demonstration showcases:")
    print("    - Credential check and DH (2048-bit MODP) key agreement")
    print("    - AES-256-GCM frames over a length-prefixed stream")
    print("    - Tamper detection without dropping the connection")
    print("    - Key erasure and the security audit log")
    pause()

    # Step 1: rejected login
    print_header("STEP 1: AUTHENTICATION")
    print_step(1, "Trying wrong credentials...")
    try:
        establisher.establish(Credentials("user", "wrong"), lambda value: value)
    except AuthError as exc:
        print(f"      Rejected: {exc} (code {int(exc.code)})")

    # Step 2: key agreement over a socket pair
    print_step(2, "Connecting Alice and Bob and agreeing a session key...")
    sock_a, sock_b = socket.socketpair()
    stream_a, stream_b = SocketStream(sock_a), SocketStream(sock_b)
    alice, bob = establish_both(establisher, stream_a, stream_b)
    print(f"      Alice key: {alice.session_key.hex()[:32]}...")
    print(f"      Bob key:   {bob.session_key.hex()[:32]}...")
    print(f"      Keys match: {alice.session_key == bob.session_key}")
    pause()

    # Step 3: duplex messaging
    print_header("STEP 2: DUPLEX MESSAGING")
    alice_source, alice_thread, alice_result = start_engine(context, stream_a, alice, "Alice")
    bob_source, bob_thread, bob_result = start_engine(context, stream_b, bob, "Bob")

    print_step(3, "Alice and Bob talk at the same time...")
    alice_source.put("Hi Bob, this line is encrypted.")
    bob_source.put("Hi Alice, so is this one.")
    alice_source.put("Frames are nonce | tag | ciphertext.")
    time.sleep(0.5)

    # Step 4: tampering
    print_step(4, "Injecting a frame sealed under the wrong key toward Bob...")
    forged = FrameCodec(bytes(32)).seal(b"forged").to_bytes()
    stream_a.write_bytes(LengthPrefixedFraming().encode(forged))
    time.sleep(0.2)
    alice_source.put("Still here after the forged frame.")
    time.sleep(0.5)
    pause()

    # Step 5: teardown
    print_header("STEP 3: TEARDOWN")
    print_step(5, "Alice quits; Bob's side closes when the stream does...")
    alice_source.put(QUIT)
    alice_thread.join(5)
    bob_thread.join(5)

    for name, result in (("Alice", alice_result), ("Bob", bob_result)):
        stats = result.get("stats")
        if stats is not None:
            print(f"      {name}: sent={stats.sent} received={stats.received} dropped={stats.dropped}")

    alice.terminate()
    bob.terminate()
    print(f"      Sessions terminated: {alice.is_terminated and bob.is_terminated}")

    context.events.print_audit_log()
    context.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
