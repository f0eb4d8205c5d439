from __future__ import annotations

import asyncio
import io
import logging
import os
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from reportlab.lib.pagesizes import A4
from reportlab.pdfgen import canvas
from sqlalchemy.orm import Session

from app.conversation.messages import format_amount
from app.core.config import (
    CATALOG_CACHE_TTL_SECONDS,
    CATALOG_EXPORT_TIMEOUT_SECONDS,
    CATALOG_MAX_BYTES,
    CATALOG_OUTPUT_DIR,
)
from app.models.merchant import Merchant
from app.services.cart import list_active_products
from app.services.catalog_cache import CatalogCache, CatalogDocument

logger = logging.getLogger(__name__)


class CatalogExportError(RuntimeError):
    pass


@dataclass(frozen=True)
class CatalogLine:
    name: str
    price: Decimal
    currency: str
    code: str | None
    category: str | None
    description: str | None


def render_catalog_pdf(merchant_name: str, contact: str | None, lines: list[CatalogLine]) -> bytes:
    buffer = io.BytesIO()
    c = canvas.Canvas(buffer, pagesize=A4)
    width, height = A4
    y = height - 50
    page = 1

    def new_page():
        nonlocal y, page
        c.setFont("Helvetica", 8)
        c.drawCentredString(width / 2, 25, f"{merchant_name} - page {page}")
        c.showPage()
        page += 1
        y = height - 50

    def write_line(text: str = "", gap: int = 16, bold: bool = False, font_size: int = 10, x: int = 40):
        nonlocal y
        if y < 60:
            new_page()
        c.setFont("Helvetica-Bold" if bold else "Helvetica", font_size)
        c.drawString(x, y, text)
        y -= gap

    c.setFont("Helvetica-Bold", 20)
    c.drawCentredString(width / 2, y, merchant_name or "CATALOGUE")
    y -= 24
    c.setFont("Helvetica", 10)
    if contact:
        c.drawCentredString(width / 2, y, contact)
        y -= 16
    c.drawCentredString(width / 2, y, datetime.now().strftime("%d/%m/%Y"))
    y -= 30

    current_category = None
    for line in lines:
        category = line.category or "Produits"
        if category != current_category:
            current_category = category
            write_line(category.upper(), gap=20, bold=True, font_size=12)
        code = f" [{line.code}]" if line.code else ""
        write_line(f"{line.name}{code}", gap=14, bold=True)
        write_line(format_amount(line.price, line.currency), gap=14, x=60)
        if line.description:
            write_line(line.description[:110], gap=14, font_size=9, x=60)
        y -= 6

    if not lines:
        write_line("Aucun produit disponible pour le moment.")

    c.setFont("Helvetica", 8)
    c.drawCentredString(width / 2, 25, f"{merchant_name} - page {page}")
    c.showPage()
    c.save()
    return buffer.getvalue()


class CatalogExporter:
    def __init__(
        self,
        cache: CatalogCache,
        *,
        timeout: float = CATALOG_EXPORT_TIMEOUT_SECONDS,
        max_bytes: int = CATALOG_MAX_BYTES,
        output_dir: str | None = CATALOG_OUTPUT_DIR,
    ) -> None:
        self.cache = cache
        self.timeout = timeout
        self.max_bytes = max_bytes
        self.output_dir = output_dir

    async def export(self, db: Session, merchant: Merchant) -> CatalogDocument:
        cached = self.cache.get(merchant.id)
        if cached is not None:
            return cached

        # ORM objects stay on this thread; the renderer only sees plain values
        lines = [
            CatalogLine(
                name=product.name,
                price=Decimal(product.price),
                currency=product.currency,
                code=product.code,
                category=product.category,
                description=product.description,
            )
            for product in list_active_products(db, merchant.id)
        ]
        try:
            content = await asyncio.wait_for(
                asyncio.to_thread(render_catalog_pdf, merchant.name, merchant.whatsapp_number, lines),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as exc:
            raise CatalogExportError(f"catalog export timed out after {self.timeout}s") from exc
        except Exception as exc:
            raise CatalogExportError(f"catalog export failed: {exc}") from exc

        if len(content) > self.max_bytes:
            raise CatalogExportError(f"catalog too large ({len(content)} bytes)")

        document = CatalogDocument(filename=f"catalogue_{merchant.id}.pdf", content=content)
        self._keep_copy(merchant.id, document)
        self.cache.put(merchant.id, document)
        logger.info("catalog exported size=%s products=%s", len(content), len(lines), extra={"merchant_id": merchant.id})
        return document

    def _keep_copy(self, merchant_id: int, document: CatalogDocument) -> None:
        if not self.output_dir:
            return
        base_dir = os.path.join(self.output_dir, f"merchant_{merchant_id}")
        try:
            os.makedirs(base_dir, exist_ok=True)
            with open(os.path.join(base_dir, document.filename), "wb") as f:
                f.write(document.content)
        except OSError:
            logger.warning("catalog copy not written dir=%s", base_dir, exc_info=True)


catalog_cache = CatalogCache(ttl_seconds=CATALOG_CACHE_TTL_SECONDS)
_default_exporter = CatalogExporter(catalog_cache)


def get_catalog_exporter() -> CatalogExporter:
    return _default_exporter
