import hashlib
import hmac
import re
from typing import Optional

from passlib.context import CryptContext

from .config import settings

_pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

PIN_RE = re.compile(r"^\d{4}$")


def hash_password(password: str) -> str:
    return _pwd_context.hash(password)


def verify_password(password: str, hashed: Optional[str]) -> bool:
    if not hashed:
        return False
    return _pwd_context.verify(password, hashed)


def is_valid_pin(pin: Optional[str]) -> bool:
    return bool(pin) and bool(PIN_RE.match(pin))


def hash_pin(pin: str) -> str:
    # Same bcrypt context as passwords; the plain PIN never reaches the store.
    return _pwd_context.hash(pin)


def verify_pin(pin: str, hashed: Optional[str]) -> bool:
    if not hashed or not is_valid_pin(pin):
        return False
    return _pwd_context.verify(pin, hashed)


def pin_fingerprint(pin: str, merchant_id: str) -> str:
    """
    Keyed digest used to compare two stored PINs for equality.

    bcrypt hashes are salted, so without the plain PIN they cannot be matched
    against each other (e.g. when an inactive employee is reactivated).
    """
    key = (settings.secret_key or "bitagora-pin").encode("utf-8")
    return hmac.new(key, f"{merchant_id}:{pin}".encode("utf-8"), hashlib.sha256).hexdigest()
