"""At-rest encryption of tenant DNS provider credentials.

AES-256-GCM with a PBKDF2-HMAC-SHA256 derived key. The stored form is
``salt:iv:tag:ciphertext``, each part base64 encoded, so values written by
earlier deployments keep decrypting.
"""

import base64
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from pagesdns.app.errors import CredentialError
from pagesdns.config import config

IV_LENGTH = 16
SALT_LENGTH = 64
TAG_LENGTH = 16
KEY_LENGTH = 32
ITERATIONS = 100000
MIN_SECRET_LENGTH = 32


def _secret(secret=None) -> str:
    secret = secret if secret is not None else config.get_string("encryption_key")
    if not secret:
        raise CredentialError("encryption_key is not configured")
    return secret


def _derive_key(secret: str, salt: bytes) -> bytes:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=salt,
        iterations=ITERATIONS,
    )
    return kdf.derive(secret.encode("utf-8"))


def encrypt(plaintext: str, secret=None) -> str:
    if not plaintext:
        raise CredentialError("Cannot encrypt empty value")
    secret = _secret(secret)
    if len(secret) < MIN_SECRET_LENGTH:
        raise CredentialError(
            f"encryption_key must be at least {MIN_SECRET_LENGTH} characters long"
        )

    salt = os.urandom(SALT_LENGTH)
    iv = os.urandom(IV_LENGTH)
    sealed = AESGCM(_derive_key(secret, salt)).encrypt(
        iv, plaintext.encode("utf-8"), None
    )
    ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
    return ":".join(
        base64.b64encode(part).decode("ascii") for part in (salt, iv, tag, ciphertext)
    )


def decrypt(encrypted: str, secret=None) -> str:
    if not encrypted:
        raise CredentialError("Cannot decrypt empty value")
    secret = _secret(secret)

    parts = encrypted.split(":")
    if len(parts) != 4:
        raise CredentialError("Decryption failed: invalid encrypted data format")
    try:
        salt, iv, tag, ciphertext = (base64.b64decode(p) for p in parts)
        plaintext = AESGCM(_derive_key(secret, salt)).decrypt(
            iv, ciphertext + tag, None
        )
    except (InvalidTag, ValueError) as exc:
        raise CredentialError(f"Decryption failed: {str(exc) or 'authentication tag mismatch'}") from exc
    return plaintext.decode("utf-8")

