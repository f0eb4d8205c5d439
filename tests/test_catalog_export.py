import asyncio
import time
from decimal import Decimal

import pytest

from app.services import catalog_export
from app.services.catalog_cache import CatalogCache, CatalogDocument
from app.services.catalog_export import CatalogExporter, CatalogExportError, CatalogLine, render_catalog_pdf
from tests.db_helpers import add_merchant, add_product, new_session


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def test_cache_entries_expire_after_ttl():
    clock = FakeClock()
    cache = CatalogCache(ttl_seconds=60, clock=clock)
    document = CatalogDocument(filename="catalogue_1.pdf", content=b"%PDF")

    cache.put(1, document)
    clock.now += 59
    assert cache.get(1) is document

    clock.now += 1
    assert cache.get(1) is None


def test_cache_invalidation():
    cache = CatalogCache(ttl_seconds=60)
    cache.put(1, CatalogDocument(filename="a.pdf", content=b"a"))
    cache.put(2, CatalogDocument(filename="b.pdf", content=b"b"))

    cache.invalidate(1)
    assert cache.get(1) is None
    assert cache.get(2) is not None

    cache.invalidate()
    assert cache.get(2) is None


def test_render_catalog_pdf_produces_a_pdf():
    lines = [
        CatalogLine("Riz 5kg", Decimal("5000"), "XOF", "R5", "Épicerie", "Riz parfumé"),
        CatalogLine("Huile 1L", Decimal("1500"), "XOF", None, None, None),
    ]

    content = render_catalog_pdf("Boutique Awa", "+2250102030405", lines)

    assert content.startswith(b"%PDF")


def test_render_handles_many_products_and_empty_catalogs():
    lines = [CatalogLine(f"Produit {i}", Decimal("100"), "XOF", None, "Divers", None) for i in range(120)]

    assert render_catalog_pdf("Boutique Awa", None, lines).startswith(b"%PDF")
    assert render_catalog_pdf("Boutique Awa", None, []).startswith(b"%PDF")


def test_exporter_caches_the_rendered_document(monkeypatch, tmp_path):
    db = new_session()
    merchant = add_merchant(db)
    add_product(db, merchant, "Riz 5kg", "5000")
    calls = []

    def fake_render(merchant_name, contact, lines):
        calls.append([line.name for line in lines])
        return b"%PDF-1.4 fake"

    monkeypatch.setattr(catalog_export, "render_catalog_pdf", fake_render)
    exporter = CatalogExporter(CatalogCache(ttl_seconds=600), output_dir=str(tmp_path))

    first = asyncio.run(exporter.export(db, merchant))
    second = asyncio.run(exporter.export(db, merchant))

    assert first is second
    assert first.filename == f"catalogue_{merchant.id}.pdf"
    assert calls == [["Riz 5kg"]]
    assert (tmp_path / f"merchant_{merchant.id}" / first.filename).read_bytes() == b"%PDF-1.4 fake"


def test_exporter_rejects_oversized_documents(monkeypatch):
    db = new_session()
    merchant = add_merchant(db)
    monkeypatch.setattr(catalog_export, "render_catalog_pdf", lambda *_args: b"x" * 2048)
    exporter = CatalogExporter(CatalogCache(ttl_seconds=600), max_bytes=1024, output_dir=None)

    with pytest.raises(CatalogExportError):
        asyncio.run(exporter.export(db, merchant))
    assert exporter.cache.get(merchant.id) is None


def test_exporter_times_out(monkeypatch):
    db = new_session()
    merchant = add_merchant(db)

    def slow_render(*_args):
        time.sleep(0.3)
        return b"%PDF"

    monkeypatch.setattr(catalog_export, "render_catalog_pdf", slow_render)
    exporter = CatalogExporter(CatalogCache(ttl_seconds=600), timeout=0.05, output_dir=None)

    with pytest.raises(CatalogExportError, match="timed out"):
        asyncio.run(exporter.export(db, merchant))


def test_renderer_errors_become_export_errors(monkeypatch):
    db = new_session()
    merchant = add_merchant(db)

    def broken(*_args):
        raise OSError("font missing")

    monkeypatch.setattr(catalog_export, "render_catalog_pdf", broken)
    exporter = CatalogExporter(CatalogCache(ttl_seconds=600), output_dir=None)

    with pytest.raises(CatalogExportError, match="font missing"):
        asyncio.run(exporter.export(db, merchant))
