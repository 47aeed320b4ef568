"""
WireGuard Key Material

generate_public_key() produces the placeholder key shown for a peer whose
owner did not paste one in. It has no private half: real clients bring
their own key material, or the operator asks for a real keypair with
generate_keypair(), which is printed once and never stored.
"""

import base64
import binascii
import secrets
import string
import subprocess
from typing import Tuple

KEY_LENGTH = 44
KEY_ALPHABET = string.ascii_uppercase + string.ascii_lowercase + string.digits + "+/"


def generate_public_key() -> str:
    """
    Generate a placeholder public key.

    Returns:
        44 characters drawn uniformly from [A-Za-z0-9+/]
    """
    return ''.join(secrets.choice(KEY_ALPHABET) for _ in range(KEY_LENGTH))


def validate_public_key(candidate) -> bool:
    """
    Check that candidate looks like a WireGuard public key.

    Accepts both placeholder keys (44 alphabet characters) and real
    base64-encoded 32-byte keys (43 characters plus '=' padding).
    """
    if not isinstance(candidate, str) or len(candidate) != KEY_LENGTH:
        return False

    body = candidate[:-1]
    last = candidate[-1]
    if any(ch not in KEY_ALPHABET for ch in body):
        return False
    return last in KEY_ALPHABET or last == '='


def derive_public_key(private_key_base64: str) -> str:
    """
    Derive WireGuard public key from private key.

    Uses PyNaCl for derivation (same curve25519 as WireGuard).

    Args:
        private_key_base64: Base64-encoded private key

    Returns:
        Base64-encoded public key

    Raises:
        ValueError: if the private key is not base64 of 32 bytes
    """
    from nacl.public import PrivateKey

    try:
        private_bytes = base64.b64decode(private_key_base64.strip(), validate=True)
    except binascii.Error as e:
        raise ValueError(f"Private key is not valid base64: {e}") from e

    if len(private_bytes) != 32:
        raise ValueError(f"Private key must be 32 bytes, got {len(private_bytes)}")

    private = PrivateKey(private_bytes)
    return base64.b64encode(bytes(private.public_key)).decode('ascii')


def generate_keypair() -> Tuple[str, str]:
    """
    Generate a WireGuard keypair.

    Returns:
        (private_key_base64, public_key_base64)
    """
    try:
        result = subprocess.run(
            ['wg', 'genkey'],
            capture_output=True,
            check=True,
            timeout=5
        )
        private_key = result.stdout.decode().strip()
        return private_key, derive_public_key(private_key)

    except (subprocess.CalledProcessError, subprocess.TimeoutExpired, FileNotFoundError):
        # No wg binary: PyNaCl does the same clamped curve25519 generation
        from nacl.public import PrivateKey as NaClPrivateKey

        private = NaClPrivateKey.generate()
        private_key = base64.b64encode(bytes(private)).decode('ascii')
        public_key = base64.b64encode(bytes(private.public_key)).decode('ascii')
        return private_key, public_key
