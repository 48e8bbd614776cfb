"""QR rendering for the pairing flow."""

from __future__ import annotations

import base64
import io
from typing import TextIO

import qrcode
import qrcode.image.svg

LINK_STEPS: tuple[str, ...] = (
    "Open WhatsApp on your phone",
    "Tap Menu (3 dots) or Settings",
    'Select "Linked Devices"',
    'Tap "Link a Device"',
    "Scan this QR code",
)


def render_svg_data_uri(code: str) -> str:
    """Encode *code* as a QR code and return it as an SVG ``data:`` URI."""
    image = qrcode.make(
        code,
        image_factory=qrcode.image.svg.SvgPathImage,
        box_size=10,
        border=2,
    )
    svg = image.to_string(encoding="UTF-8")
    return "data:image/svg+xml;base64," + base64.b64encode(svg).decode("ascii")


def render_ascii(code: str) -> str:
    """Encode *code* as a compact block-character QR code for terminals."""
    qr = qrcode.QRCode(border=1)
    qr.add_data(code)
    qr.make(fit=True)
    out = io.StringIO()
    qr.print_ascii(out=out, invert=True)
    return out.getvalue()


def print_pairing_qr(code: str, stream: TextIO) -> None:
    """Write the QR code and linking instructions to *stream*."""
    stream.write("\nScan this QR code with your WhatsApp:\n")
    stream.write(render_ascii(code))
    stream.write("\nSteps to connect:\n")
    for index, step in enumerate(LINK_STEPS, start=1):
        stream.write(f"{index}. {step}\n")
    stream.write("\n")
    stream.flush()
