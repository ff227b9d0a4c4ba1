from __future__ import annotations

import hashlib
import json
import logging
from typing import Any

from ..config import WebhookCredentials
from .webhook_crypto import PayloadCipher, SignatureVerifier, WebhookCryptoError, derive_aes_key


logger = logging.getLogger(__name__)

ACK_TEXT = "successfully received callback"


class WebhookError(Exception):
    status_code = 400
    detail = "webhook request rejected"

    def __init__(self, detail: str | None = None) -> None:
        if detail:
            self.detail = detail
        super().__init__(self.detail)


class WebhookRequestError(WebhookError):
    status_code = 400
    detail = "missing webhook parameters"


class WebhookSignatureError(WebhookError):
    status_code = 401
    detail = "webhook signature verification failed"


class WebhookDecryptionError(WebhookError):
    status_code = 400
    detail = "webhook payload decryption failed"


class WebhookConfigError(WebhookError):
    status_code = 500
    detail = "webhook is not configured"


def check_credentials(creds: WebhookCredentials) -> None:
    if not creds.configured:
        raise WebhookConfigError("tencent meeting webhook token/encoding_aes_key not configured")
    try:
        derive_aes_key(creds.encoding_aes_key)
    except WebhookCryptoError as e:
        raise WebhookConfigError(f"invalid encoding_aes_key: {e}") from None


def _require(**params: str | None) -> None:
    missing = [name for name, value in params.items() if not (value or "").strip()]
    if missing:
        raise WebhookRequestError(f"missing required parameters: {', '.join(missing)}")


def _decrypt(creds: WebhookCredentials, data: str) -> str:
    result = PayloadCipher(creds.encoding_aes_key).try_decrypt(data)
    if not result.ok:
        logger.warning("tencent webhook decrypt failed: %s", type(result.error).__name__)
        raise WebhookDecryptionError()
    return result.plaintext or ""


def verify_url(
    creds: WebhookCredentials,
    *,
    check_str: str | None,
    timestamp: str | None,
    nonce: str | None,
    signature: str | None,
    raw_check_str: str | None = None,
) -> str:
    """
    URL verification handshake: returns the plaintext the platform expects echoed back.

    The signature is checked against the percent-decoded check_str first, then against the
    value exactly as transmitted when it differs (callers pass it as raw_check_str).
    """
    check_credentials(creds)
    _require(check_str=check_str, timestamp=timestamp, nonce=nonce, signature=signature)

    verifier = SignatureVerifier(creds.token)
    candidates = [check_str]
    if raw_check_str and raw_check_str != check_str:
        candidates.append(raw_check_str)
    if not any(verifier.verify(timestamp=timestamp, nonce=nonce, data=c, signature=signature) for c in candidates):
        logger.warning("tencent webhook url verification: signature mismatch")
        raise WebhookSignatureError()

    return _decrypt(creds, check_str or "")


def open_event(
    creds: WebhookCredentials,
    *,
    data: str | None,
    timestamp: str | None,
    nonce: str | None,
    signature: str | None,
) -> dict[str, Any]:
    """Verify and decrypt an event delivery envelope; returns the decoded event object."""
    check_credentials(creds)
    _require(data=data, timestamp=timestamp, nonce=nonce, signature=signature)

    if not SignatureVerifier(creds.token).verify(timestamp=timestamp, nonce=nonce, data=data, signature=signature):
        logger.warning("tencent webhook event: signature mismatch")
        raise WebhookSignatureError()

    plaintext = _decrypt(creds, data or "")
    try:
        event = json.loads(plaintext)
    except json.JSONDecodeError:
        raise WebhookDecryptionError("decrypted payload is not valid JSON") from None
    if not isinstance(event, dict):
        raise WebhookDecryptionError("decrypted payload is not a JSON object")
    return event


def event_dedup_key(event: dict[str, Any], plaintext: str | None = None) -> str:
    trace_id = str(event.get("trace_id") or "").strip()
    if trace_id:
        return trace_id
    raw = plaintext if plaintext is not None else json.dumps(event, sort_keys=True, ensure_ascii=False)
    return "sha1:" + hashlib.sha1(raw.encode("utf-8")).hexdigest()  # noqa: S324
