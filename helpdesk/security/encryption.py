from __future__ import annotations

import base64
import hashlib
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from helpdesk.core.config import get_settings
from helpdesk.core.errors import UpstreamUnavailable, ValidationError


def _derive_key(secret: str | None = None) -> bytes:
    if secret is None:
        configured = get_settings().encryption_key
        secret = configured.get_secret_value() if configured else ""
    if not secret:
        raise ValidationError("ENCRYPTION_KEY is not configured")
    return hashlib.sha256(secret.encode("utf-8")).digest()


def encrypt_secret(secret: str, *, key: str | None = None) -> str:
    iv = os.urandom(12)
    encryptor = Cipher(
        algorithms.AES(_derive_key(key)),
        modes.GCM(iv),
        backend=default_backend(),
    ).encryptor()
    ciphertext = encryptor.update(secret.encode("utf-8")) + encryptor.finalize()
    return ":".join(
        (
            base64.b64encode(iv).decode("utf-8"),
            base64.b64encode(encryptor.tag).decode("utf-8"),
            base64.b64encode(ciphertext).decode("utf-8"),
        )
    )


def decrypt_secret(payload: str, *, key: str | None = None) -> str:
    try:
        iv_b64, tag_b64, data_b64 = payload.split(":")
    except ValueError:
        raise UpstreamUnavailable("Stored secret is not in the expected format") from None
    iv = base64.b64decode(iv_b64)
    tag = base64.b64decode(tag_b64)
    data = base64.b64decode(data_b64)
    decryptor = Cipher(
        algorithms.AES(_derive_key(key)),
        modes.GCM(iv, tag),
        backend=default_backend(),
    ).decryptor()
    try:
        decrypted = decryptor.update(data) + decryptor.finalize()
    except InvalidTag:
        raise UpstreamUnavailable("Unable to decrypt stored secret; check ENCRYPTION_KEY") from None
    return decrypted.decode("utf-8")
