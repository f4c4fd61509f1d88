import io
import os

import qrcode
from PIL import Image, ImageDraw, ImageFont

from stockledger.models.transaction import MovementDirection, StockTransaction

# A4 portrait at 150 DPI
DPI = 150
PAGE_W = 1240
PAGE_H = 1754
MARGIN = 80
QR_SIZE = 220
ROW_H = 44

# (header, x offset, max width)
COLUMNS = [
    ("#", 0, 50),
    ("Code", 60, 200),
    ("Product", 270, 400),
    ("Qty", 680, 120),
    ("Project", 810, 170),
    ("Rack", 990, 100),
]


def _get_font(size: int) -> ImageFont.FreeTypeFont | ImageFont.ImageFont:
    """Try system fonts, fallback to default."""
    font_paths = [
        "/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf",
        "/usr/share/fonts/truetype/liberation/LiberationSans-Regular.ttf",
        "/usr/share/fonts/TTF/DejaVuSans.ttf",
    ]
    for fp in font_paths:
        if os.path.exists(fp):
            return ImageFont.truetype(fp, size)
    return ImageFont.load_default()


def _fit(draw: ImageDraw.ImageDraw, text: str, font, width: int) -> str:
    while text and draw.textbbox((0, 0), text, font=font)[2] > width and len(text) > 3:
        text = text[:-4] + "..."
    return text


def _qr_image(data: str) -> Image.Image:
    qr = qrcode.QRCode(version=None, error_correction=qrcode.constants.ERROR_CORRECT_M, box_size=8, border=1)
    qr.add_data(data)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white").convert("RGB")
    return img.resize((QR_SIZE, QR_SIZE), Image.NEAREST)


def document_title(txn: StockTransaction) -> str:
    if txn.direction == MovementDirection.IN:
        return "GOODS RECEIVED NOTE"
    return "DELIVERY NOTE"


def document_filename(txn: StockTransaction) -> str:
    return f"{txn.transaction_code}.pdf"


def render_delivery_document(txn: StockTransaction) -> bytes:
    """Render the delivery note / GRN of a transaction as a one-page PDF."""
    img = Image.new("RGB", (PAGE_W, PAGE_H), "white")
    draw = ImageDraw.Draw(img)

    title_font = _get_font(44)
    head_font = _get_font(26)
    body_font = _get_font(22)

    img.paste(_qr_image(txn.transaction_code), (PAGE_W - MARGIN - QR_SIZE, MARGIN))

    y = MARGIN
    draw.text((MARGIN, y), document_title(txn), fill="#000000", font=title_font)
    y += 70
    draw.text((MARGIN, y), txn.transaction_code, fill="#333333", font=head_font)
    y += 44

    status = txn.status.value if hasattr(txn.status, "value") else str(txn.status)
    meta = [f"Status: {status.upper()}"]
    if txn.date:
        meta.append(f"Date: {txn.date:%Y-%m-%d}")
    if txn.invoice_number:
        meta.append(f"Invoice / PO: {txn.invoice_number}")
    if txn.supplier_name:
        meta.append(f"Supplier: {txn.supplier_name}")
    text_w = PAGE_W - 3 * MARGIN - QR_SIZE
    for line in meta:
        draw.text((MARGIN, y), _fit(draw, line, body_font, text_w), fill="#555555", font=body_font)
        y += 34

    y = max(y, MARGIN + QR_SIZE) + 40
    draw.line([(MARGIN, y), (PAGE_W - MARGIN, y)], fill="#000000", width=2)
    y += 10
    for header, dx, _w in COLUMNS:
        draw.text((MARGIN + dx, y), header, fill="#000000", font=head_font)
    y += ROW_H
    draw.line([(MARGIN, y - 6), (PAGE_W - MARGIN, y - 6)], fill="#000000", width=1)

    footer_y = PAGE_H - MARGIN - 120
    rows_fit = (footer_y - y) // ROW_H
    items = list(txn.items)
    shown = items if len(items) <= rows_fit else items[: max(rows_fit - 1, 0)]

    for pos, item in enumerate(shown, start=1):
        cells = [
            str(pos),
            item.product_code,
            item.product_name,
            f"{item.quantity} {item.unit}",
            item.project_name,
            item.rack_number,
        ]
        for (header, dx, width), value in zip(COLUMNS, cells):
            draw.text((MARGIN + dx, y), _fit(draw, value, body_font, width), fill="#333333", font=body_font)
        y += ROW_H

    if len(shown) < len(items):
        draw.text((MARGIN, y), f"... and {len(items) - len(shown)} more items", fill="#888888", font=body_font)
        y += ROW_H

    draw.line([(MARGIN, y), (PAGE_W - MARGIN, y)], fill="#000000", width=1)
    y += 12
    draw.text((MARGIN, y), f"Total quantity: {txn.total_quantity}", fill="#000000", font=head_font)

    if txn.message:
        draw.text((MARGIN, y + 50), _fit(draw, txn.message, body_font, PAGE_W - 2 * MARGIN), fill="#555555", font=body_font)

    draw.text((MARGIN, footer_y + 60), "Issued by", fill="#888888", font=body_font)
    draw.text((PAGE_W // 2, footer_y + 60), "Received by", fill="#888888", font=body_font)

    buf = io.BytesIO()
    img.save(buf, format="PDF", resolution=DPI)
    buf.seek(0)
    return buf.getvalue()
