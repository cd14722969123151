"""
Credential Renderer: turns an encrypted credential into a PNG QR code.
Render profiles only change size and error correction, never the encoded data.
"""

import io
import qrcode
from qrcode.constants import ERROR_CORRECT_H, ERROR_CORRECT_L, ERROR_CORRECT_M, ERROR_CORRECT_Q

ERROR_CORRECTION_LEVELS = {
    "L": ERROR_CORRECT_L,
    "M": ERROR_CORRECT_M,
    "Q": ERROR_CORRECT_Q,
    "H": ERROR_CORRECT_H,
}

RENDER_PROFILES = {
    "screen": {"box_size": 10, "border": 2, "error_correction": "M"},
    "print": {"box_size": 20, "border": 4, "error_correction": "H"},
}


def render(token, profile="screen", **overrides):
    if profile not in RENDER_PROFILES:
        raise ValueError(f"Unknown render profile: {profile}")

    settings = dict(RENDER_PROFILES[profile])
    settings.update(overrides)

    qr = qrcode.QRCode(
        version=None,
        box_size=settings["box_size"],
        border=settings["border"],
        error_correction=ERROR_CORRECTION_LEVELS[settings["error_correction"]],
    )
    qr.add_data(token)
    qr.make(fit=True)

    img = qr.make_image(fill_color="black", back_color="white")
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()
