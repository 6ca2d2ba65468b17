"""keyward: WebAuthn security-key registration service."""

__version__ = "0.1.0"
