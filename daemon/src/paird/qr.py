"""Render pairing codes as QR images.

The pairing code issued by the transport is encoded as-is; the phone app
that scans it knows how to interpret it.
"""

import base64
import io

import qrcode
from qrcode.main import QRCode


class PairingCodeRenderer:
    """Turn a raw pairing code into a scannable QR code."""

    def __init__(self, code: str):
        """Initialize renderer.

        Args:
            code: Raw pairing code from the transport.
        """
        self.code = code

    def _create_qr(self) -> QRCode:
        qr = qrcode.QRCode(
            version=None,  # Auto-size
            error_correction=qrcode.constants.ERROR_CORRECT_L,
            box_size=10,
            border=4,
        )
        qr.add_data(self.code)
        qr.make(fit=True)
        return qr

    def to_terminal(self) -> str:
        """ASCII art for terminal display."""
        output = io.StringIO()
        self._create_qr().print_ascii(out=output, invert=True)
        return output.getvalue()

    def to_png_bytes(self) -> bytes:
        img = self._create_qr().make_image(fill_color="black", back_color="white")
        buffer = io.BytesIO()
        img.save(buffer, format="PNG")
        return buffer.getvalue()

    def to_png(self, path: str) -> None:
        """Save QR code as PNG file."""
        with open(path, "wb") as f:
            f.write(self.to_png_bytes())

    def to_data_url(self) -> str:
        """PNG embedded as a data: URL, ready for an <img> tag."""
        encoded = base64.b64encode(self.to_png_bytes()).decode("ascii")
        return f"data:image/png;base64,{encoded}"
