"""QR code rendering for event guest links.

Output is fully determined by the input string: fixed pixel size, quiet zone,
colours and error correction level, and a PNG encoder without timestamps.
"""

import io

import qrcode
from PIL import Image
from qrcode.constants import ERROR_CORRECT_M

QR_SIZE_PX = 300
QR_BORDER_MODULES = 2
QR_DARK = 0
QR_LIGHT = 255


def qr_matrix(data: str) -> list[list[bool]]:
    """Module matrix for ``data``, quiet zone included; ``True`` is a dark module."""
    code = qrcode.QRCode(version=None, error_correction=ERROR_CORRECT_M, border=QR_BORDER_MODULES)
    code.add_data(data)
    code.make(fit=True)
    return [list(row) for row in code.get_matrix()]


def render_qr_png(data: str) -> bytes:
    matrix = qr_matrix(data)
    modules = len(matrix)
    image = Image.new("L", (modules, modules), QR_LIGHT)
    image.putdata([QR_DARK if dark else QR_LIGHT for row in matrix for dark in row])
    image = image.resize((QR_SIZE_PX, QR_SIZE_PX), Image.Resampling.NEAREST)
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()
