#!/usr/bin/env python3
"""
Generate a VAPID (P-256) key pair for Web Push.

Usage:
    python scripts/generate_vapid_keys.py          # Print both keys
    python scripts/generate_vapid_keys.py --env    # Output as .env format

The public key is the uncompressed EC point, the private key the raw
32-byte scalar, both base64url-encoded without padding. The public key is
also what the browser's PushManager.subscribe() needs as
applicationServerKey.
"""
import base64
import sys

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec


def _b64url(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def generate_vapid_keys() -> tuple[str, str]:
    """Return (public_key, private_key) as base64url strings."""
    private_key = ec.generate_private_key(ec.SECP256R1())
    public_raw = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.X962,
        format=serialization.PublicFormat.UncompressedPoint,
    )
    private_raw = private_key.private_numbers().private_value.to_bytes(32, "big")
    return _b64url(public_raw), _b64url(private_raw)


def main():
    if any(arg in ("--help", "-h") for arg in sys.argv[1:]):
        print(__doc__)
        return

    public_key, private_key = generate_vapid_keys()

    if "--env" in sys.argv[1:]:
        print("VAPID_SUBJECT=mailto:admin@example.com")
        print(f"VAPID_PUBLIC_KEY={public_key}")
        print(f"VAPID_PRIVATE_KEY={private_key}")
    else:
        print(f"public:  {public_key}")
        print(f"private: {private_key}")


if __name__ == "__main__":
    main()
