import io
import json
from datetime import date

import pytest

from errors import ValidationFailedError
from receipts import ReceiptScanner, build_prefill, match_category
from schemas import ScannedReceipt


def test_match_category_exact_and_fuzzy():
    assert match_category("Food") == "food"
    assert match_category("  groceris ") == "groceries"
    assert match_category("spaceship") is None
    assert match_category("") is None
    assert match_category(None) is None


def test_build_prefill_parses_loose_values():
    scanned = ScannedReceipt.model_validate(
        {
            "amount": "12,50",
            "date": "2024-05-03T10:15:00Z",
            "description": "",
            "category": "FOOD",
            "merchantName": "Corner Bakery",
        }
    )
    prefill = build_prefill(scanned)
    assert prefill.amount == 12.5
    assert prefill.date == date(2024, 5, 3)
    assert prefill.description == "Corner Bakery"
    assert prefill.category == "food"
    assert prefill.type.value == "EXPENSE"


def test_build_prefill_drops_unparseable_fields():
    prefill = build_prefill(
        ScannedReceipt(amount="about ten", date="yesterday", category="misc")
    )
    assert prefill.amount is None
    assert prefill.date is None
    assert prefill.description is None
    assert prefill.category is None


def test_scan_rejects_bad_uploads():
    scanner = ReceiptScanner(url="http://scanner.invalid/scan", timeout=1)
    with pytest.raises(ValidationFailedError):
        scanner.scan(b"", "image/png")
    with pytest.raises(ValidationFailedError):
        scanner.scan(b"%PDF", "application/pdf")


def test_scan_requires_configuration():
    scanner = ReceiptScanner(url="", timeout=1)
    assert scanner.configured is False
    with pytest.raises(RuntimeError):
        scanner.scan(b"\x89PNG", "image/png")


def test_scan_posts_image_and_parses_reply(monkeypatch):
    seen = {}

    class _Reply(io.BytesIO):
        def __enter__(self):
            return self

        def __exit__(self, *exc):
            return False

    def fake_urlopen(req, timeout):
        seen["url"] = req.full_url
        seen["body"] = json.loads(req.data.decode("utf-8"))
        seen["timeout"] = timeout
        return _Reply(json.dumps({"amount": 9.99, "category": "food"}).encode("utf-8"))

    monkeypatch.setattr("receipts.urlopen", fake_urlopen)
    scanner = ReceiptScanner(url="http://scanner.local/scan", timeout=3)
    scanned = scanner.scan(b"\x89PNG", "image/png")

    assert seen["url"] == "http://scanner.local/scan"
    assert seen["body"]["mime_type"] == "image/png"
    assert seen["timeout"] == 3
    assert scanned.amount == 9.99
    assert scanned.category == "food"


def test_scan_wraps_non_object_reply(monkeypatch):
    class _Reply(io.BytesIO):
        def __enter__(self):
            return self

        def __exit__(self, *exc):
            return False

    monkeypatch.setattr(
        "receipts.urlopen", lambda req, timeout: _Reply(b"[1, 2, 3]")
    )
    with pytest.raises(RuntimeError):
        ReceiptScanner(url="http://scanner.local/scan", timeout=3).scan(
            b"\x89PNG", "image/png"
        )
