from __future__ import annotations

from decimal import Decimal

import pytest


def test_encrypt_round_trip_and_fresh_nonce():
    from proposalhub.services.token_crypto import decrypt_json, decrypt_string, encrypt_json, encrypt_string

    a = encrypt_string("li_at=secret")
    b = encrypt_string("li_at=secret")
    assert a != b
    assert a.startswith("v1.")
    assert "secret" not in a
    assert decrypt_string(a) == "li_at=secret"

    state = {"cookies": [{"name": "li_at", "value": "x"}], "origins": []}
    assert decrypt_json(encrypt_json(state)) == state
    assert encrypt_string(None) is None


def test_tampered_or_foreign_ciphertext_decrypts_to_none(monkeypatch):
    from proposalhub.services import token_crypto

    token = token_crypto.encrypt_string("hello")
    version, nonce, body = token.split(".")
    flipped = body[:-2] + ("AA" if not body.endswith("AA") else "BB")

    assert token_crypto.decrypt_string(f"{version}.{nonce}.{flipped}") is None
    assert token_crypto.decrypt_string("v2." + token[3:]) is None
    assert token_crypto.decrypt_string("garbage") is None
    assert token_crypto.decrypt_string("") is None

    # A different key cannot read it.
    monkeypatch.setattr(token_crypto.settings, "token_enc_key", "another-key")
    assert token_crypto.decrypt_string(token) is None


def test_next_token_hides_and_restores_start_key():
    from proposalhub.db.dynamodb.pagination import decode_next_token, encode_next_token

    lek = {"pk": "PROPOSAL#p1", "sk": "MESSAGE#2024-01-01T00:00:00.000000Z#m1", "n": Decimal("3")}
    token = encode_next_token(lek)
    assert "PROPOSAL" not in token
    assert decode_next_token(token) == {**lek, "n": 3}

    assert encode_next_token(None) is None
    assert encode_next_token({}) is None
    assert decode_next_token(None) is None


@pytest.mark.parametrize("bad", ["not-a-token", "v1.AAAA.BBBB"])
def test_invalid_next_token_is_a_validation_error(bad):
    from proposalhub.db.dynamodb.errors import DdbValidation
    from proposalhub.db.dynamodb.pagination import decode_next_token

    with pytest.raises(DdbValidation):
        decode_next_token(bad)


def test_next_token_with_wrong_payload_is_rejected():
    from proposalhub.db.dynamodb.errors import DdbValidation
    from proposalhub.db.dynamodb.pagination import decode_next_token
    from proposalhub.services.token_crypto import encrypt_json, encrypt_string

    with pytest.raises(DdbValidation):
        decode_next_token(encrypt_json({"v": 99, "lek": {"pk": "x"}}))
    with pytest.raises(DdbValidation):
        decode_next_token(encrypt_json({"v": 1, "lek": "x"}))
    with pytest.raises(DdbValidation):
        decode_next_token(encrypt_string("{not json"))
