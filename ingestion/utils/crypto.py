"""Cryptographic utilities for token encryption."""

from functools import lru_cache

from cryptography.fernet import Fernet
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
import base64


@lru_cache(maxsize=8)
def generate_key(password: str, salt: bytes) -> bytes:
    """Generate encryption key from password."""
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=salt,
        iterations=100000,
    )
    key = base64.urlsafe_b64encode(kdf.derive(password.encode()))
    return key


def encrypt_token(token: str, encryption_key: str, salt: str) -> str:
    """Encrypt OAuth token."""
    f = Fernet(generate_key(encryption_key, salt.encode()))
    encrypted = f.encrypt(token.encode())
    return base64.urlsafe_b64encode(encrypted).decode()


def decrypt_token(encrypted_token: str, encryption_key: str, salt: str) -> str:
    """Decrypt OAuth token."""
    f = Fernet(generate_key(encryption_key, salt.encode()))
    decrypted = f.decrypt(base64.urlsafe_b64decode(encrypted_token))
    return decrypted.decode()
