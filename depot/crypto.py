"""
Depot - Cryptography Module

All key derivation and encryption for the depot lives here. Nothing in this
file touches the database: callers hand in the password, the store salt and
the bytes to protect, and get bytes back.

Scheme:
    1. Password + store salt -> PBKDF2-HMAC-SHA1 (4096 rounds) -> 32-byte key
    2. Key + fresh 12-byte nonce -> AES-256-GCM -> ciphertext || 16-byte tag
    3. Caller stores the ciphertext and the nonce separately

Every value is encrypted on its own, so one depot file can hold values sealed
under different passwords next to plain notes. They all share the store salt.

The iteration count is low by today's standards. It is kept because it is
what existing depot databases were written with; a different count derives a
different key and every sealed value becomes unreadable.
"""

import os
from typing import Tuple, Union

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC


# =============================================================================
# Configuration
# =============================================================================

KEY_SIZE = 32            # 256-bit key
SALT_SIZE = 32           # one salt per depot file
NONCE_SIZE = 12          # 96-bit nonce for AES-GCM
TAG_SIZE = 16            # 128-bit authentication tag

PBKDF2_ITERATIONS = 4096


def _to_bytes(password: Union[str, bytes]) -> bytes:
    if isinstance(password, str):
        return password.encode('utf-8')
    return bytes(password)


# =============================================================================
# Key Derivation
# =============================================================================

def generate_salt() -> bytes:
    """Return SALT_SIZE random bytes for a new depot."""
    return os.urandom(SALT_SIZE)


def derive_key(
    password: Union[str, bytes],
    salt: bytes,
    iterations: int = PBKDF2_ITERATIONS
) -> bytes:
    """
    Derive a 256-bit key from a password and the store salt.

    Deterministic: the same password, salt and iteration count always give
    the same key.

    Args:
        password: User password (str is UTF-8 encoded)
        salt: The depot's 32-byte salt
        iterations: PBKDF2 round count

    Returns:
        32-byte key
    """
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA1(),
        length=KEY_SIZE,
        salt=salt,
        iterations=iterations,
    )
    return kdf.derive(_to_bytes(password))


# =============================================================================
# Encryption (AES-256-GCM)
# =============================================================================

def encrypt(
    password: Union[str, bytes],
    salt: bytes,
    plaintext: bytes,
    iterations: int = PBKDF2_ITERATIONS
) -> Tuple[bytes, bytes]:
    """
    Encrypt plaintext under a key derived from password and salt.

    A new random nonce is drawn for every call, so sealing the same value
    twice with the same password never produces the same nonce.

    Returns:
        (ciphertext, nonce) tuple
        - ciphertext: encrypted data + 16-byte tag
        - nonce: 12 random bytes (must be stored with ciphertext)
    """
    key = derive_key(password, salt, iterations)
    nonce = os.urandom(NONCE_SIZE)
    ciphertext = AESGCM(key).encrypt(nonce, plaintext, None)
    return ciphertext, nonce


def decrypt(
    password: Union[str, bytes],
    salt: bytes,
    nonce: bytes,
    ciphertext: bytes,
    iterations: int = PBKDF2_ITERATIONS
) -> bytes:
    """
    Decrypt ciphertext produced by encrypt().

    Raises:
        cryptography.exceptions.InvalidTag: wrong password, wrong nonce or
            damaged ciphertext. The three are indistinguishable.
    """
    key = derive_key(password, salt, iterations)
    return AESGCM(key).decrypt(nonce, ciphertext, None)
