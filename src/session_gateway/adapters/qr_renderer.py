"""QR code rendering adapter."""

import base64
import io
from dataclasses import dataclass
from typing import Protocol

import qrcode
from qrcode.constants import ERROR_CORRECT_M


class CodeRenderer(Protocol):
    """Turns a scannable payload into something a client can display."""

    def to_data_url(self, payload: str) -> str:
        """Return a data URL for the payload."""


@dataclass
class QrCodeRenderer:
    """Renders QR payloads as base64 PNG data URLs."""

    box_size: int = 10
    border: int = 4

    def to_png(self, payload: str) -> bytes:
        """Render the payload as PNG bytes."""
        qr = qrcode.QRCode(
            error_correction=ERROR_CORRECT_M,
            box_size=self.box_size,
            border=self.border,
        )
        qr.add_data(payload)
        qr.make(fit=True)
        image = qr.make_image(fill_color="black", back_color="white")
        buffer = io.BytesIO()
        image.save(buffer, format="PNG")
        return buffer.getvalue()

    def to_data_url(self, payload: str) -> str:
        """Render the payload as a ``data:image/png;base64`` URL."""
        encoded = base64.b64encode(self.to_png(payload)).decode("ascii")
        return f"data:image/png;base64,{encoded}"
