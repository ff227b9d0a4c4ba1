from __future__ import annotations

import base64
import binascii
import hashlib
import secrets
from dataclasses import dataclass, field

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes


AES_KEY_BYTES = 32
_BLOCK_BITS = 128


class WebhookCryptoError(ValueError):
    """Base class for webhook key/ciphertext failures. Messages never carry key or plaintext."""


class InvalidKeyLength(WebhookCryptoError):
    pass


class EmptyCiphertext(WebhookCryptoError):
    pass


class PaddingOrDecryptFailure(WebhookCryptoError):
    pass


def sha1_signature(*parts: str | None) -> str:
    items = [str(p or "") for p in parts]
    raw = "".join(sorted(items)).encode("utf-8")
    return hashlib.sha1(raw).hexdigest()  # noqa: S324 - mandated by the platform


def derive_aes_key(encoding_aes_key: str) -> bytes:
    """
    EncodingAESKey (43 chars, base64 without "=" padding) -> 32 raw key bytes.

    Raises InvalidKeyLength for anything that does not decode to exactly 32 bytes.
    """
    k = (encoding_aes_key or "").strip()
    try:
        key = base64.b64decode(k + "=", validate=False)
    except (binascii.Error, ValueError):
        raise InvalidKeyLength("encoding_aes_key is not valid base64") from None
    if len(key) != AES_KEY_BYTES:
        raise InvalidKeyLength(f"encoding_aes_key decoded length must be {AES_KEY_BYTES} bytes, got {len(key)}")
    return key


def _aes_cbc_decrypt(aes_key: bytes, data: bytes) -> bytes:
    iv = aes_key[:16]
    cipher = Cipher(algorithms.AES(aes_key), modes.CBC(iv))
    decryptor = cipher.decryptor()
    padded = decryptor.update(data) + decryptor.finalize()
    unpadder = padding.PKCS7(_BLOCK_BITS).unpadder()
    return unpadder.update(padded) + unpadder.finalize()


def _aes_cbc_encrypt(aes_key: bytes, data: bytes) -> bytes:
    iv = aes_key[:16]
    cipher = Cipher(algorithms.AES(aes_key), modes.CBC(iv))
    encryptor = cipher.encryptor()
    padder = padding.PKCS7(_BLOCK_BITS).padder()
    padded = padder.update(data) + padder.finalize()
    return encryptor.update(padded) + encryptor.finalize()


@dataclass(frozen=True)
class SignatureVerifier:
    token: str = field(repr=False)

    def compute(self, *, timestamp: str | None, nonce: str | None, data: str | None) -> str:
        return sha1_signature(self.token, timestamp, nonce, data)

    def verify(self, *, timestamp: str | None, nonce: str | None, data: str | None, signature: str | None) -> bool:
        expected = self.compute(timestamp=timestamp, nonce=nonce, data=data)
        provided = (signature or "").strip()
        # compare_digest rejects non-ASCII str, so compare bytes.
        return secrets.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


@dataclass(frozen=True)
class DecryptResult:
    plaintext: str | None = None
    error: WebhookCryptoError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class PayloadCipher:
    encoding_aes_key: str = field(repr=False)

    def _aes_key(self) -> bytes:
        return derive_aes_key(self.encoding_aes_key)

    def decrypt(self, encrypted_data: str | None) -> str:
        aes_key = self._aes_key()

        try:
            cipher_bytes = base64.b64decode((encrypted_data or "").strip(), validate=False)
        except (binascii.Error, ValueError):
            raise PaddingOrDecryptFailure("ciphertext is not valid base64") from None
        if not cipher_bytes:
            raise EmptyCiphertext("decoded ciphertext is empty")

        try:
            plain = _aes_cbc_decrypt(aes_key, cipher_bytes)
        except ValueError:
            # Block-size mismatch or invalid PKCS#7 padding: wrong key or corrupted data.
            raise PaddingOrDecryptFailure("aes-cbc decrypt/unpad failed") from None

        try:
            return plain.decode("utf-8")
        except UnicodeDecodeError:
            raise PaddingOrDecryptFailure("decrypted payload is not valid utf-8") from None

    def try_decrypt(self, encrypted_data: str | None) -> DecryptResult:
        try:
            return DecryptResult(plaintext=self.decrypt(encrypted_data))
        except WebhookCryptoError as e:
            return DecryptResult(error=e)

    def encrypt(self, plaintext: str) -> str:
        enc_bytes = _aes_cbc_encrypt(self._aes_key(), (plaintext or "").encode("utf-8"))
        return base64.b64encode(enc_bytes).decode("ascii")
