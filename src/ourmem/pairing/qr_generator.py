"""QR code rendering for pairing codes.

Renders the pairing code produced by PairingCodec for display in the
terminal, a browser, or as a PNG file.
"""

import base64
import html
import io

import qrcode
from qrcode.main import QRCode

from ourmem.formatting import format_pairing_code


class QrGenerator:
    """Generate QR codes for pairing.

    The QR code holds the pairing code string verbatim, so scanning it is
    equivalent to typing the code by hand.
    """

    def __init__(self, pairing_code: str):
        """Initialize QR generator.

        Args:
            pairing_code: Encoded pairing code.
        """
        self.pairing_code = pairing_code

    def _create_qr(self) -> QRCode:
        """Create QR code object.

        Returns:
            QRCode instance with payload data.
        """
        qr = qrcode.QRCode(
            version=None,  # Auto-size
            error_correction=qrcode.constants.ERROR_CORRECT_M,
            box_size=10,
            border=4,
        )
        qr.add_data(self.pairing_code)
        qr.make(fit=True)
        return qr

    def to_terminal(self) -> str:
        """Generate ASCII art for terminal display.

        Returns:
            String with QR code using Unicode block characters.
        """
        qr = self._create_qr()

        output = io.StringIO()
        qr.print_ascii(out=output, invert=True)
        return output.getvalue()

    def to_png(self, path: str) -> None:
        """Save QR code as PNG file.

        Args:
            path: Path to save PNG file.
        """
        qr = self._create_qr()
        img = qr.make_image(fill_color="black", back_color="white")
        img.save(path)

    def to_html(self) -> str:
        """Generate HTML with embedded QR code and the readable code.

        Returns:
            Complete HTML document with embedded QR code image.
        """
        qr = self._create_qr()
        img = qr.make_image(fill_color="black", back_color="white")

        buffer = io.BytesIO()
        img.save(buffer, format="PNG")
        img_b64 = base64.b64encode(buffer.getvalue()).decode("ascii")
        readable = html.escape(format_pairing_code(self.pairing_code))

        return f"""<!DOCTYPE html>
<html>
<head>
    <title>Our Memories Pairing</title>
    <style>
        body {{
            display: flex;
            flex-direction: column;
            align-items: center;
            justify-content: center;
            min-height: 100vh;
            margin: 0;
            background: #fff5f7;
            color: #4a2c3a;
            font-family: system-ui, sans-serif;
        }}
        h1 {{ margin-bottom: 20px; }}
        img {{ border: 10px solid white; border-radius: 10px; }}
        code {{ max-width: 40em; word-break: break-all; margin-top: 20px; }}
    </style>
</head>
<body>
    <h1>Scan to Pair</h1>
    <img src="data:image/png;base64,{img_b64}" alt="QR Code">
    <code>{readable}</code>
</body>
</html>
"""
