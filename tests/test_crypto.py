"""
test_crypto.py — AES-256-GCM token encryption

Called by: pytest
Depends on: secondlook.utils.crypto
"""

import base64

import pytest

from secondlook.utils.crypto import (
    EncryptionKeyError,
    TokenDecryptError,
    decrypt_token,
    encrypt_token,
    mask_value,
)

HEX_KEY = "ab" * 32
OTHER_KEY = "cd" * 32


def test_round_trip():
    stored = encrypt_token("access-token-123", key=HEX_KEY)
    assert decrypt_token(stored, key=HEX_KEY) == "access-token-123"


def test_stored_format_and_fresh_nonce():
    a = encrypt_token("same", key=HEX_KEY)
    b = encrypt_token("same", key=HEX_KEY)
    assert a != b
    nonce, tag, ciphertext = a.split(":")
    assert len(base64.b64decode(nonce)) == 12
    assert len(base64.b64decode(tag)) == 16
    assert "same" not in a


def test_tampered_ciphertext_fails():
    nonce, tag, ciphertext = encrypt_token("secret-value", key=HEX_KEY).split(":")
    raw = bytearray(base64.b64decode(ciphertext))
    raw[0] ^= 0x01
    tampered = ":".join([nonce, tag, base64.b64encode(bytes(raw)).decode()])
    with pytest.raises(TokenDecryptError):
        decrypt_token(tampered, key=HEX_KEY)


def test_wrong_key_fails():
    stored = encrypt_token("secret-value", key=HEX_KEY)
    with pytest.raises(TokenDecryptError):
        decrypt_token(stored, key=OTHER_KEY)


@pytest.mark.parametrize("stored", ["", "onlyonepart", "a:b", "!!:??:**", "AAAA:AAAA:AAAA"])
def test_malformed_values_fail(stored):
    with pytest.raises(TokenDecryptError):
        decrypt_token(stored, key=HEX_KEY)


def test_key_formats():
    raw = bytes(range(32))
    b64_key = base64.b64encode(raw).decode()
    stored = encrypt_token("x", key=raw.hex())
    assert decrypt_token(stored, key=b64_key) == "x"
    assert decrypt_token(encrypt_token("y", key="k" * 32), key="k" * 32) == "y"


@pytest.mark.parametrize("bad_key", ["", "short", "zz" * 32])
def test_bad_keys(bad_key):
    with pytest.raises(EncryptionKeyError):
        encrypt_token("x", key=bad_key)


def test_default_key_from_settings():
    assert decrypt_token(encrypt_token("from-env")) == "from-env"


def test_mask_value():
    assert mask_value("") == ""
    assert mask_value("abc") == "****"
    assert mask_value("acct-998877").endswith("8877")
    assert "acct" not in mask_value("acct-998877")
