"""Seed material and secret handling.

The wallet seed is encrypted under the session secret with a Fernet key derived by
scrypt. The ciphertext format is ``<urlsafe-b64 salt>.<fernet token>`` and is treated as
opaque text everywhere else in the service.
"""

import base64
import os
import secrets

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

SEED_LENGTH = 32
SALT_LENGTH = 16

# scrypt work factors (RFC 7914 interactive parameters)
SCRYPT_N = 2**14
SCRYPT_R = 8
SCRYPT_P = 1


def _derive_key(secret: str, salt: bytes) -> bytes:
    kdf = Scrypt(salt=salt, length=32, n=SCRYPT_N, r=SCRYPT_R, p=SCRYPT_P)
    return base64.urlsafe_b64encode(kdf.derive(secret.encode("utf-8")))


def generate_seed() -> bytes:
    """Generate fresh root key material for a wallet identity."""
    return secrets.token_bytes(SEED_LENGTH)


def generate_secret() -> str:
    """Generate a key-derivation secret for passwordless enrollment."""
    return secrets.token_urlsafe(24)


def encrypt_seed(seed: bytes, secret: str) -> str:
    salt = os.urandom(SALT_LENGTH)
    token = Fernet(_derive_key(secret, salt)).encrypt(seed)
    encoded_salt = base64.urlsafe_b64encode(salt).decode("ascii")
    return f"{encoded_salt}.{token.decode('ascii')}"


def decrypt_seed(ciphertext: str, secret: str) -> bytes:
    """
    Decrypt a ciphertext produced by ``encrypt_seed``.

    Raises:
        ValueError: If the ciphertext is malformed or the secret is wrong
    """
    try:
        encoded_salt, token = ciphertext.split(".", 1)
        salt = base64.urlsafe_b64decode(encoded_salt)
        return Fernet(_derive_key(secret, salt)).decrypt(token.encode("ascii"))
    except (ValueError, InvalidToken) as e:
        raise ValueError("Unable to decrypt seed") from e

