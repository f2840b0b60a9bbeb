"""
Terminal rendering of login QR codes.
"""

import io

import qrcode


def render_qr_ascii(data: str) -> str:
    """Render QR data as text suitable for a terminal or a JSON field."""
    qr = qrcode.QRCode(
        version=1,
        error_correction=qrcode.constants.ERROR_CORRECT_L,
        box_size=1,
        border=2,
    )
    qr.add_data(data)
    qr.make(fit=True)

    out = io.StringIO()
    qr.print_ascii(out=out, invert=True)
    return out.getvalue()


def print_qr(ascii_qr: str) -> None:
    """Print a rendered QR code with a scan banner."""
    print()
    print("=" * 70)
    print("SCAN THIS QR CODE WITH WHATSAPP (Linked devices)")
    print("=" * 70)
    print()
    print(ascii_qr)
    print("=" * 70)
    print()
