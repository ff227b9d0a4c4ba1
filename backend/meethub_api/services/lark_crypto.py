from __future__ import annotations

import base64
import binascii
import hashlib
import json
import secrets
from dataclasses import dataclass, field
from typing import Any

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from .webhook_crypto import EmptyCiphertext, PaddingOrDecryptFailure


def lark_signature(*, timestamp: str, nonce: str, encrypt_key: str, body: bytes) -> str:
    raw = (timestamp or "").encode("utf-8") + (nonce or "").encode("utf-8") + (encrypt_key or "").encode("utf-8") + body
    return hashlib.sha256(raw).hexdigest()


def verify_lark_signature(
    *, timestamp: str | None, nonce: str | None, encrypt_key: str, body: bytes, signature: str | None
) -> bool:
    expected = lark_signature(timestamp=timestamp or "", nonce=nonce or "", encrypt_key=encrypt_key, body=body)
    return secrets.compare_digest((signature or "").strip().encode("utf-8"), expected.encode("utf-8"))


@dataclass(frozen=True)
class LarkCipher:
    """
    Lark event encryption: key = sha256(encrypt_key), the first 16 bytes of the decoded
    payload are the IV, the rest is AES-256-CBC ciphertext with PKCS#7 padding.
    """

    encrypt_key: str = field(repr=False)

    def _key(self) -> bytes:
        return hashlib.sha256((self.encrypt_key or "").encode("utf-8")).digest()

    def decrypt(self, encrypted: str | None) -> str:
        try:
            raw = base64.b64decode((encrypted or "").strip(), validate=False)
        except (binascii.Error, ValueError):
            raise PaddingOrDecryptFailure("lark payload is not valid base64") from None
        if len(raw) <= 16:
            raise EmptyCiphertext("lark payload has no ciphertext")

        iv, data = raw[:16], raw[16:]
        try:
            decryptor = Cipher(algorithms.AES(self._key()), modes.CBC(iv)).decryptor()
            padded = decryptor.update(data) + decryptor.finalize()
            unpadder = padding.PKCS7(128).unpadder()
            plain = unpadder.update(padded) + unpadder.finalize()
            return plain.decode("utf-8")
        except (ValueError, UnicodeDecodeError):
            raise PaddingOrDecryptFailure("lark payload decrypt failed") from None

    def encrypt(self, plaintext: str, *, iv: bytes | None = None) -> str:
        iv = iv or secrets.token_bytes(16)
        encryptor = Cipher(algorithms.AES(self._key()), modes.CBC(iv)).encryptor()
        padder = padding.PKCS7(128).padder()
        padded = padder.update(plaintext.encode("utf-8")) + padder.finalize()
        return base64.b64encode(iv + encryptor.update(padded) + encryptor.finalize()).decode("ascii")

    def decrypt_json(self, encrypted: str | None) -> dict[str, Any]:
        try:
            obj = json.loads(self.decrypt(encrypted))
        except json.JSONDecodeError:
            raise PaddingOrDecryptFailure("lark payload is not valid JSON") from None
        if not isinstance(obj, dict):
            raise PaddingOrDecryptFailure("lark payload is not a JSON object")
        return obj
