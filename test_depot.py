"""
Depot - Store and Crypto Tests

Run with: pytest test_depot.py

Covers the cipher functions on their own and the Depot contract:
- plain and encrypted round trips
- wrong / missing password classification
- idempotent drop
- salt persistence across reopen
- nonce freshness
- switching a key between plain and encrypted
- corrupted rows (base64, UTF-8, ciphertext)
"""

import base64
import os
import sqlite3

import pytest
from cryptography.exceptions import InvalidTag

from depot import crypto
from depot.errors import (
    BadPasswordError,
    DepotIOError,
    MalformedDataError,
    NotFoundError,
    PasswordRequiredError,
    StorageError,
)
from depot.store import Depot, PlainRecord, SealedRecord, open_depot


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "test.db")


@pytest.fixture
def depot(db_path):
    d = Depot(db_path)
    yield d
    d.close()


def nonce_of(db_path, key):
    conn = sqlite3.connect(db_path)
    try:
        return conn.execute("SELECT nonce FROM storage WHERE key = ?", (key,)).fetchone()[0]
    finally:
        conn.close()


# =============================================================================
# Crypto
# =============================================================================

def test_kdf():
    """Key derivation is deterministic and depends on password and salt."""
    salt = crypto.generate_salt()
    assert len(salt) == crypto.SALT_SIZE

    key1 = crypto.derive_key("test_password", salt)
    key2 = crypto.derive_key(b"test_password", salt)
    assert key1 == key2, "KDF should be deterministic, str and bytes alike"
    assert len(key1) == crypto.KEY_SIZE

    assert crypto.derive_key("different_password", salt) != key1
    assert crypto.derive_key("test_password", crypto.generate_salt()) != key1
    assert crypto.derive_key("test_password", salt, iterations=1000) != key1


def test_kdf_known_vector():
    """PBKDF2-HMAC-SHA1, 4096 rounds (RFC 6070 test vector, first 20 bytes)."""
    key = crypto.derive_key(b"password", b"salt")
    assert key[:20].hex() == "4b007901b765489abead49d926f721d065a429c1"


def test_encrypt_decrypt():
    val = b"testing123"
    salt = crypto.generate_salt()

    ciphertext, nonce = crypto.encrypt("testpassword", salt, val)
    assert len(nonce) == crypto.NONCE_SIZE
    assert len(ciphertext) == len(val) + crypto.TAG_SIZE

    assert crypto.decrypt("testpassword", salt, nonce, ciphertext) == val


def test_decrypt_failures_are_uniform():
    salt = crypto.generate_salt()
    ciphertext, nonce = crypto.encrypt("goodpassword", salt, b"secret")

    with pytest.raises(InvalidTag):
        crypto.decrypt("badpassword", salt, nonce, ciphertext)

    tampered = bytearray(ciphertext)
    tampered[0] ^= 1
    with pytest.raises(InvalidTag):
        crypto.decrypt("goodpassword", salt, nonce, bytes(tampered))

    with pytest.raises(InvalidTag):
        crypto.decrypt("goodpassword", salt, os.urandom(crypto.NONCE_SIZE), ciphertext)


def test_encrypt_uses_fresh_nonce():
    salt = crypto.generate_salt()
    c1, n1 = crypto.encrypt("pw", salt, b"same")
    c2, n2 = crypto.encrypt("pw", salt, b"same")
    assert n1 != n2
    assert c1 != c2


# =============================================================================
# Depot
# =============================================================================

def test_plain(depot):
    depot.stow("plaintext", "testing123")
    assert depot.fetch("plaintext") == "testing123"

    assert depot.drop("plaintext")
    with pytest.raises(NotFoundError):
        depot.fetch("plaintext")


def test_plain_ignores_password(depot):
    depot.stow("note", "hello")
    assert depot.fetch("note", "whatever") == "hello"


def test_cipher(depot):
    depot.stow("ciphertext", "testing123", "password")
    assert depot.fetch("ciphertext", "password") == "testing123"

    depot.drop("ciphertext")
    with pytest.raises(NotFoundError):
        depot.fetch("ciphertext", "password")


def test_cipher_unicode(depot):
    depot.stow("greeting", "grüße ✓ 你好", b"p\xc3\xa4ss")
    assert depot.fetch("greeting", "päss") == "grüße ✓ 你好"


def test_value_stored_as_base64(depot, db_path):
    depot.stow("token", "s3cr3t", "pw")
    rec = depot.record("token")
    assert isinstance(rec, SealedRecord)
    assert rec.encrypted
    assert len(rec.nonce) == crypto.NONCE_SIZE
    assert "s3cr3t" not in rec.value
    assert len(base64.b64decode(rec.value)) == len("s3cr3t") + crypto.TAG_SIZE


def test_bad_decrypt(depot):
    depot.stow("baddecrypt", "testing123", "goodpassword")

    with pytest.raises(BadPasswordError) as excinfo:
        depot.fetch("baddecrypt", "badpassword")
    assert str(excinfo.value) == "bad password"

    with pytest.raises(PasswordRequiredError):
        depot.fetch("baddecrypt")


def test_bad_key(depot):
    with pytest.raises(NotFoundError):
        depot.fetch("badkey")
    with pytest.raises(NotFoundError):
        depot.record("badkey")


def test_drop_missing_key_is_not_an_error(depot):
    assert depot.drop("neverstowed") is False


def test_overwrite_switches_state(depot):
    depot.stow("k", "plain")
    assert isinstance(depot.record("k"), PlainRecord)

    depot.stow("k", "sealed", "pw")
    assert isinstance(depot.record("k"), SealedRecord)
    with pytest.raises(PasswordRequiredError):
        depot.fetch("k")
    assert depot.fetch("k", "pw") == "sealed"

    depot.stow("k", "plain again")
    assert depot.fetch("k") == "plain again"
    assert isinstance(depot.record("k"), PlainRecord)


def test_overwrite_updates_modified(depot, db_path):
    depot.stow("k", "v1")
    conn = sqlite3.connect(db_path)
    conn.execute("UPDATE storage SET modified = 0 WHERE key = 'k'")
    conn.commit()
    conn.close()

    depot.stow("k", "v2")
    assert depot.record("k").modified > 0


def test_different_passwords_per_key(depot):
    depot.stow("a", "alpha", "pw-a")
    depot.stow("b", "bravo", "pw-b")
    depot.stow("c", "charlie")

    assert depot.fetch("a", "pw-a") == "alpha"
    assert depot.fetch("b", "pw-b") == "bravo"
    assert depot.fetch("c") == "charlie"
    with pytest.raises(BadPasswordError):
        depot.fetch("a", "pw-b")


def test_nonce_unique_per_stow(depot, db_path):
    depot.stow("k", "same", "pw")
    first = nonce_of(db_path, "k")
    depot.stow("k", "same", "pw")
    second = nonce_of(db_path, "k")
    assert first != second


def test_salt_persists_across_reopen(db_path):
    with Depot(db_path) as d:
        d.stow("k", "value", "pw")

    with open_depot(db_path) as d:
        assert d.fetch("k", "pw") == "value"

    conn = sqlite3.connect(db_path)
    rows = conn.execute("SELECT data FROM salt").fetchall()
    conn.close()
    assert len(rows) == 1
    assert len(rows[0][0]) == crypto.SALT_SIZE


def test_iterations_must_match(db_path):
    with Depot(db_path, iterations=1000) as d:
        d.stow("k", "value", "pw")
        assert d.fetch("k", "pw") == "value"

    with Depot(db_path) as d:
        with pytest.raises(BadPasswordError):
            d.fetch("k", "pw")


def test_corrupted_base64(depot, db_path):
    depot.stow("k", "value", "pw")
    conn = sqlite3.connect(db_path)
    conn.execute("UPDATE storage SET val = '!!not base64!!' WHERE key = 'k'")
    conn.commit()
    conn.close()

    with pytest.raises(MalformedDataError):
        depot.fetch("k", "pw")


def test_corrupted_ciphertext(depot, db_path):
    depot.stow("k", "value", "pw")
    raw = bytearray(base64.b64decode(depot.record("k").value))
    raw[0] ^= 1
    conn = sqlite3.connect(db_path)
    conn.execute(
        "UPDATE storage SET val = ? WHERE key = 'k'",
        (base64.b64encode(bytes(raw)).decode("ascii"),),
    )
    conn.commit()
    conn.close()

    with pytest.raises(BadPasswordError):
        depot.fetch("k", "pw")


def test_invalid_utf8_plaintext(depot, db_path):
    # Seal non-UTF-8 bytes directly with the store salt.
    conn = sqlite3.connect(db_path)
    salt = conn.execute("SELECT data FROM salt").fetchone()[0]
    ciphertext, nonce = crypto.encrypt("pw", salt, b"\xff\xfe\xfd")
    conn.execute(
        "INSERT INTO storage (key, val, nonce) VALUES (?, ?, ?)",
        ("k", base64.b64encode(ciphertext).decode("ascii"), nonce),
    )
    conn.commit()
    conn.close()

    with pytest.raises(MalformedDataError):
        depot.fetch("k", "pw")


def test_missing_directory(tmp_path):
    with pytest.raises(DepotIOError):
        Depot(str(tmp_path / "nope" / "test.db"))


def test_path_is_directory(tmp_path):
    with pytest.raises(DepotIOError):
        Depot(str(tmp_path))


def test_not_a_database(tmp_path):
    path = tmp_path / "garbage.db"
    path.write_bytes(b"this is not sqlite" * 100)
    with pytest.raises(StorageError):
        Depot(str(path))


def test_bad_salt_size(db_path):
    Depot(db_path).close()
    conn = sqlite3.connect(db_path)
    conn.execute("UPDATE salt SET data = ?", (b"short",))
    conn.commit()
    conn.close()

    with pytest.raises(MalformedDataError):
        Depot(db_path)


def test_salt_stored_as_text(db_path):
    Depot(db_path).close()
    conn = sqlite3.connect(db_path)
    conn.execute("UPDATE salt SET data = ?", ("x" * crypto.SALT_SIZE,))
    conn.commit()
    conn.close()

    with pytest.raises(MalformedDataError):
        Depot(db_path)


def test_nonce_stored_as_text(depot, db_path):
    depot.stow("k", "value", "pw")
    conn = sqlite3.connect(db_path)
    conn.execute("UPDATE storage SET nonce = 'abcdefghijkl' WHERE key = 'k'")
    conn.commit()
    conn.close()

    with pytest.raises(MalformedDataError):
        depot.fetch("k", "pw")
    with pytest.raises(MalformedDataError):
        depot.record("k")


def test_value_stored_as_blob(depot, db_path):
    depot.stow("k", "value")
    conn = sqlite3.connect(db_path)
    conn.execute("UPDATE storage SET val = ? WHERE key = 'k'", (b"\x00\x01",))
    conn.commit()
    conn.close()

    with pytest.raises(MalformedDataError):
        depot.fetch("k")


def test_first_salt_row_wins(db_path):
    with Depot(db_path) as d:
        d.stow("k", "value", "pw")

    conn = sqlite3.connect(db_path)
    conn.execute("INSERT INTO salt (data) VALUES (?)", (crypto.generate_salt(),))
    conn.commit()
    conn.close()

    with Depot(db_path) as d:
        assert d.fetch("k", "pw") == "value"


def test_initialize_keeps_existing_salt(depot, db_path):
    # A second opener that lost the race must adopt the salt already written.
    salt = depot._initialize()
    assert salt == depot._salt

    conn = sqlite3.connect(db_path)
    count = conn.execute("SELECT COUNT(*) FROM salt").fetchone()[0]
    conn.close()
    assert count == 1


def test_closed_depot(db_path):
    d = Depot(db_path)
    d.close()
    d.close()
    with pytest.raises(StorageError):
        d.fetch("k")
