import base64
from decimal import Decimal
from io import BytesIO

import qrcode

from .crypto import normalize_type
from .errors import BitAgoraError, BitAgoraErrorType


def payment_uri(crypto_type: str, address: str, crypto_amount=None) -> str:
    kind = normalize_type(crypto_type)
    if kind == "bitcoin":
        if crypto_amount is None:
            return f"bitcoin:{address}"
        return f"bitcoin:{address}?amount={Decimal(str(crypto_amount)):.8f}"
    if kind == "usdt_ethereum":
        if crypto_amount is None:
            return f"ethereum:{address}"
        return f"ethereum:{address}?value={Decimal(str(crypto_amount)):.6f}"
    if kind == "usdt_tron":
        if crypto_amount is None:
            return f"tron:{address}"
        return f"tron:{address}?amount={Decimal(str(crypto_amount)):.6f}"
    if kind == "lightning":
        return f"lightning:{address}"
    raise BitAgoraError(BitAgoraErrorType.QR_ERROR, f"cannot build a payment uri for {crypto_type}")


def render_png_base64(data: str, box_size: int = 10, border: int = 4) -> str:
    if not data:
        raise BitAgoraError(BitAgoraErrorType.QR_ERROR, "qr payload is empty")
    qr = qrcode.QRCode(
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=box_size,
        border=border,
    )
    qr.add_data(data)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")
    buf = BytesIO()
    img.save(buf, format="PNG")
    return base64.b64encode(buf.getvalue()).decode("ascii")


def data_url(png_base64: str) -> str:
    return f"data:image/png;base64,{png_base64}"
