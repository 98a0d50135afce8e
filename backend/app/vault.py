from typing import Optional

from cryptography.fernet import Fernet, InvalidToken
from fastapi import HTTPException

from .config import settings

MASK = "••••"


def _fernet() -> Fernet:
    """
    Processor credentials (api keys, webhook secrets) must be readable server-side
    to call the processor, so they are encrypted rather than hashed.

    The key stays out of the store. Provide it via env:
      BITAGORA_SECRET_KEY = <base64 urlsafe 32-byte key>

    Generate one with:
      python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"
    """
    key = settings.secret_key
    if not key:
        raise HTTPException(
            status_code=500,
            detail="credential encryption is not configured (missing BITAGORA_SECRET_KEY)",
        )
    try:
        return Fernet(key.encode("utf-8"))
    except ValueError:
        raise HTTPException(status_code=500, detail="invalid BITAGORA_SECRET_KEY") from None


def encrypt_secret(secret: str) -> str:
    token = _fernet().encrypt(secret.encode("utf-8"))
    return token.decode("utf-8")


def decrypt_secret(token: str) -> str:
    try:
        raw = _fernet().decrypt(token.encode("utf-8"))
    except InvalidToken:
        raise HTTPException(status_code=500, detail="failed to decrypt stored credential") from None
    return raw.decode("utf-8")


def mask_secret(plain: Optional[str]) -> Optional[str]:
    if not plain:
        return None
    return MASK + plain[-4:] if len(plain) > 4 else MASK
