from enum import Enum
from typing import Any, Optional


class BitAgoraErrorType(str, Enum):
    AUTHENTICATION_ERROR = "AUTHENTICATION_ERROR"
    PAYMENT_ERROR = "PAYMENT_ERROR"
    INVENTORY_ERROR = "INVENTORY_ERROR"
    NETWORK_ERROR = "NETWORK_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    CRYPTO_ERROR = "CRYPTO_ERROR"
    QR_ERROR = "QR_ERROR"


class BitAgoraError(Exception):
    """
    Domain error raised by the payment helpers (crypto, exchange, QR, lightning,
    monitoring). Routers let it bubble up; `main.py` maps it to an HTTP response.
    """

    def __init__(self, type: BitAgoraErrorType, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.type = BitAgoraErrorType(type)
        self.message = message
        self.details = details

    def __repr__(self) -> str:
        return f"BitAgoraError({self.type.value}, {self.message!r})"


_USER_MESSAGES = {
    BitAgoraErrorType.AUTHENTICATION_ERROR: "Please log in again to continue",
    BitAgoraErrorType.PAYMENT_ERROR: "Payment processing failed. Please try again.",
    BitAgoraErrorType.INVENTORY_ERROR: "Inventory update failed. Product may be out of stock.",
    BitAgoraErrorType.NETWORK_ERROR: "Network error. Please check your connection.",
    BitAgoraErrorType.CRYPTO_ERROR: "Crypto payment configuration error. Please check your wallet addresses.",
    BitAgoraErrorType.QR_ERROR: "QR code processing failed. Please check your QR provider settings.",
}

_HTTP_STATUS = {
    BitAgoraErrorType.AUTHENTICATION_ERROR: 401,
    BitAgoraErrorType.PAYMENT_ERROR: 402,
    BitAgoraErrorType.NETWORK_ERROR: 503,
}


def user_message(error: BaseException) -> str:
    if isinstance(error, BitAgoraError):
        if error.type == BitAgoraErrorType.VALIDATION_ERROR:
            return error.message
        return _USER_MESSAGES.get(error.type, "An unexpected error occurred")
    return str(error) or "Unknown error"


def http_status_for(error: BitAgoraError) -> int:
    return _HTTP_STATUS.get(error.type, 400)
