# SecureComm Test Suite
"""
Test suite including:
- Unit tests per module
- Integration tests (two peers over a socket pair)
- Security tests (tampered frames, secret hygiene)

Run with: pytest
"""
