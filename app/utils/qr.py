import os
import secrets
import qrcode
from app.core.config import settings


QR_CODE_DIR = settings.static_dir / "qrcodes"
STATIC_URL_PREFIX = "/static/qrcodes"


def new_scan_token() -> str:
    """High-entropy, URL-safe single-use token for a unit label."""
    return secrets.token_urlsafe(24)


def scan_url(token: str) -> str:
    """The frontend page a phone camera opens when scanning the label."""
    return f"{settings.frontend_url}/scan/{token}"


def generate_and_save_qr(data: str, filename: str) -> str:
    """
    Generates a QR code for the given data, saves it to the filesystem,
    and returns the public URL.
    """
    os.makedirs(QR_CODE_DIR, exist_ok=True)

    qr = qrcode.QRCode(
        version=1,
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=10,
        border=4,
    )
    qr.add_data(data)
    qr.make(fit=True)

    img = qr.make_image(fill_color="black", back_color="white")

    file_path = QR_CODE_DIR / f"{filename}.png"
    img.save(file_path)

    return f"{settings.public_url}{STATIC_URL_PREFIX}/{filename}.png"
