"""
Security utilities: bearer token handling and device comm key encryption
"""
import base64
import hashlib
import logging
import os
from datetime import datetime, timedelta
from typing import Dict, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from jose import JWTError, jwt

from app.core.config import settings
from app.core.constants import DEVICE_SECRET_PREFIX

# Configure logger
logger = logging.getLogger(__name__)

_NONCE_SIZE = 12


def create_access_token(data: Dict, expires_minutes: Optional[int] = None) -> str:
    """Create a JWT access token"""
    to_encode = data.copy()

    if expires_minutes is None:
        expires_minutes = settings.JWT_EXPIRE_MINUTES

    expire = datetime.utcnow() + timedelta(minutes=expires_minutes)
    to_encode.update({"exp": expire})

    encoded_jwt = jwt.encode(
        to_encode,
        settings.JWT_SECRET_KEY,
        algorithm=settings.JWT_ALGORITHM
    )
    return encoded_jwt


def decode_token(token: str) -> Dict:
    """Decode and verify a JWT token"""
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM]
        )
        return payload
    except JWTError:
        raise ValueError("Invalid token")


def _credential_key() -> bytes:
    # AES-256 key derived from the configured secret
    return hashlib.sha256(settings.get_credential_secret().encode("utf-8")).digest()


def encrypt_device_secret(plain: str) -> str:
    """
    Encrypt a device comm key for storage

    Output is ``enc:v1:<base64(nonce + ciphertext + tag)>``.
    """
    nonce = os.urandom(_NONCE_SIZE)
    sealed = AESGCM(_credential_key()).encrypt(nonce, plain.encode("utf-8"), None)
    return DEVICE_SECRET_PREFIX + base64.b64encode(nonce + sealed).decode("ascii")


def decrypt_device_secret(stored: Optional[str]) -> Optional[str]:
    """
    Decrypt a stored device comm key

    Values without the encryption prefix are returned unchanged so keys that
    were loaded before encryption was introduced keep working.

    Raises:
        ValueError: If the stored value cannot be decrypted with the current secret
    """
    if stored is None or stored == "":
        return None
    if not stored.startswith(DEVICE_SECRET_PREFIX):
        return stored

    try:
        raw = base64.b64decode(stored[len(DEVICE_SECRET_PREFIX):])
        nonce, sealed = raw[:_NONCE_SIZE], raw[_NONCE_SIZE:]
        plain = AESGCM(_credential_key()).decrypt(nonce, sealed, None)
    except (InvalidTag, ValueError) as e:
        logger.error("Stored device comm key could not be decrypted: %s", type(e).__name__)
        raise ValueError("Stored device comm key could not be decrypted")
    return plain.decode("utf-8")
