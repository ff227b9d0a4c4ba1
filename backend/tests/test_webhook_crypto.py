from __future__ import annotations

import base64
import hashlib
import itertools

import pytest

from meethub_api.services.webhook_crypto import (
    EmptyCiphertext,
    InvalidKeyLength,
    PaddingOrDecryptFailure,
    PayloadCipher,
    SignatureVerifier,
    derive_aes_key,
    sha1_signature,
)


KEY_A = base64.b64encode(bytes(range(32))).decode("ascii").rstrip("=")
KEY_B = base64.b64encode(bytes(range(100, 132))).decode("ascii").rstrip("=")


def test_known_signature_vector() -> None:
    parts = ["test_token_123", "1700000000", "123456", "dGVzdA=="]
    expected = hashlib.sha1("".join(sorted(parts)).encode("utf-8")).hexdigest()

    verifier = SignatureVerifier("test_token_123")
    sig = verifier.compute(timestamp="1700000000", nonce="123456", data="dGVzdA==")

    assert sig == expected
    assert sig == sig.lower() and len(sig) == 40
    assert verifier.verify(timestamp="1700000000", nonce="123456", data="dGVzdA==", signature=expected)


def test_signature_ignores_argument_order() -> None:
    parts = ["test_token_123", "1700000000", "123456", "dGVzdA=="]
    digests = {sha1_signature(*perm) for perm in itertools.permutations(parts)}
    assert len(digests) == 1


def test_verify_rejects_tampered_inputs() -> None:
    verifier = SignatureVerifier("tok")
    good = verifier.compute(timestamp="1", nonce="2", data="abc")

    assert not verifier.verify(timestamp="1", nonce="2", data="abd", signature=good)
    assert not verifier.verify(timestamp="1", nonce="3", data="abc", signature=good)
    assert not SignatureVerifier("other").verify(timestamp="1", nonce="2", data="abc", signature=good)
    assert not verifier.verify(timestamp="1", nonce="2", data="abc", signature="")
    assert not verifier.verify(timestamp="1", nonce="2", data="abc", signature=None)
    assert not verifier.verify(timestamp="1", nonce="2", data="abc", signature="签名")


def test_short_sample_key_is_rejected() -> None:
    with pytest.raises(InvalidKeyLength):
        derive_aes_key("54235325")


def test_valid_key_decodes_to_32_bytes() -> None:
    assert len(KEY_A) == 43
    assert derive_aes_key(KEY_A) == bytes(range(32))


@pytest.mark.parametrize("ciphertext", ["", "AAAA", "not base64 at all"])
def test_wrong_key_length_fails_before_touching_ciphertext(ciphertext: str) -> None:
    cipher = PayloadCipher("54235325")
    with pytest.raises(InvalidKeyLength):
        cipher.decrypt(ciphertext)
    result = cipher.try_decrypt(ciphertext)
    assert not result.ok
    assert isinstance(result.error, InvalidKeyLength)


def test_empty_ciphertext() -> None:
    with pytest.raises(EmptyCiphertext):
        PayloadCipher(KEY_A).decrypt("")


@pytest.mark.parametrize(
    "plaintext",
    [
        "",
        "hello",
        "腾讯会议 webhook 回调测试 🎉",
        '{"event":"meeting.started","payload":[{"operate_time":1700000000}]}' * 3,
    ],
)
def test_round_trip(plaintext: str) -> None:
    cipher = PayloadCipher(KEY_A)
    encrypted = cipher.encrypt(plaintext)
    assert len(base64.b64decode(encrypted)) % 16 == 0
    assert cipher.decrypt(encrypted) == plaintext


def test_ciphertext_from_other_key_is_rejected() -> None:
    plaintext = '{"event":"meeting.end","trace_id":"trace-1","payload":[{"meeting_info":{"meeting_id":"m1"}}]}'
    encrypted = PayloadCipher(KEY_B).encrypt(plaintext)

    with pytest.raises(PaddingOrDecryptFailure):
        PayloadCipher(KEY_A).decrypt(encrypted)

    result = PayloadCipher(KEY_A).try_decrypt(encrypted)
    assert result.plaintext is None
    assert isinstance(result.error, PaddingOrDecryptFailure)


def test_truncated_ciphertext_is_rejected() -> None:
    encrypted = PayloadCipher(KEY_A).encrypt("x" * 40)
    raw = base64.b64decode(encrypted)
    with pytest.raises(PaddingOrDecryptFailure):
        PayloadCipher(KEY_A).decrypt(base64.b64encode(raw[:-5]).decode("ascii"))


def test_errors_do_not_leak_key_material() -> None:
    result = PayloadCipher(KEY_A).try_decrypt(PayloadCipher(KEY_B).encrypt("secret plaintext " * 4))
    assert KEY_A not in str(result.error)
    assert "secret plaintext" not in str(result.error)
    assert KEY_A not in repr(PayloadCipher(KEY_A))
