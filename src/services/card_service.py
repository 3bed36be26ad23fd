"""QR code and digital card image rendering."""
import asyncio
import io
import logging

import qrcode
from PIL import Image, ImageDraw, ImageFont
from qrcode.constants import ERROR_CORRECT_Q

logger = logging.getLogger(__name__)

# ISO/IEC 7810 ID-1 aspect ratio (credit card) at 600 px width
CARD_SIZE = (600, 378)
CARD_BACKGROUND = (17, 24, 39)
CARD_FOREGROUND = (255, 255, 255)
CARD_ACCENT = (245, 158, 11)
QR_BOX_SIZE = 20
QR_BORDER = 4
CARD_QR_SIZE = 200
CARD_MARGIN = 32


def _make_qr(data: str, box_size: int = QR_BOX_SIZE) -> Image.Image:
    qr = qrcode.QRCode(
        error_correction=ERROR_CORRECT_Q,
        box_size=box_size,
        border=QR_BORDER,
    )
    qr.add_data(data)
    qr.make(fit=True)
    return qr.make_image(fill_color="black", back_color="white").get_image().convert("RGB")


def _to_png(image: Image.Image) -> bytes:
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


def render_qr_png(code: str) -> bytes:
    """
    Render a PNG QR code encoding code.

    Raises:
        ValueError: If code is empty.
    """
    if not code or not code.strip():
        raise ValueError("QR code content is required")
    return _to_png(_make_qr(code.strip()))


def render_card_png(
    identity_code: str,
    holder_name: str = "",
    brand: str = "Suns Fidelity Card",
) -> bytes:
    """
    Render the digital fidelity card: brand, holder, code and a QR of the code.

    Raises:
        ValueError: If identity_code is empty.
    """
    if not identity_code:
        raise ValueError("Identity code is required to render a card")

    card = Image.new("RGB", CARD_SIZE, CARD_BACKGROUND)
    draw = ImageDraw.Draw(card)
    title_font = ImageFont.load_default(size=32)
    body_font = ImageFont.load_default(size=22)

    width, height = CARD_SIZE
    draw.rectangle((0, 0, width, 12), fill=CARD_ACCENT)
    draw.text((CARD_MARGIN, CARD_MARGIN + 12), brand, font=title_font, fill=CARD_ACCENT)
    if holder_name:
        draw.text(
            (CARD_MARGIN, height - CARD_MARGIN - 70),
            holder_name.upper(),
            font=body_font,
            fill=CARD_FOREGROUND,
        )
    draw.text(
        (CARD_MARGIN, height - CARD_MARGIN - 30),
        identity_code,
        font=body_font,
        fill=CARD_FOREGROUND,
    )

    qr = _make_qr(identity_code, box_size=8).resize(
        (CARD_QR_SIZE, CARD_QR_SIZE), Image.Resampling.NEAREST,
    )
    card.paste(qr, (width - CARD_MARGIN - CARD_QR_SIZE, height - CARD_MARGIN - CARD_QR_SIZE))
    return _to_png(card)


class CardService:
    """Renders QR codes and digital cards off the event loop."""

    def __init__(self, brand: str = "Suns Fidelity Card") -> None:
        self._brand = brand

    async def qr_code(self, code: str) -> bytes:
        """PNG QR code encoding code."""
        return await asyncio.to_thread(render_qr_png, code)

    async def card(self, identity_code: str, name: str | None = None, surname: str | None = None) -> bytes:
        """PNG digital card for a member."""
        holder = " ".join(part for part in (name, surname) if part)
        png = await asyncio.to_thread(render_card_png, identity_code, holder, self._brand)
        logger.info("Rendered card for identity_code=%s (%d bytes)", identity_code, len(png))
        return png
