"""Terminal rendering of WhatsApp pairing codes."""

import io

import qrcode


def render_qr(code: str) -> str:
    """Render a pairing code as a QR block scannable from a terminal.

    Uses half-height block characters, so each text line holds two rows
    of modules and the code fits in a normal console window.
    """
    qr = qrcode.QRCode(border=1)
    qr.add_data(code)
    qr.make(fit=True)
    out = io.StringIO()
    qr.print_ascii(out=out, invert=True)
    return out.getvalue()
