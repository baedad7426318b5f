from __future__ import annotations

import base64
import json
import logging
from datetime import date
from typing import Iterable, Optional
from urllib.error import URLError
from urllib.request import Request, urlopen

from pydantic import ValidationError
from rapidfuzz.distance import Levenshtein

from categories import EXPENSE_CATEGORIES
from config import get_settings
from errors import ValidationFailedError
from money import parse_amount, to_number
from schemas import ScannedReceipt, TransactionPrefill

logger = logging.getLogger(__name__)

MAX_IMAGE_BYTES = 5 * 1024 * 1024


class ReceiptScanner:
    """Client for the external receipt-reading service."""

    def __init__(
        self, url: Optional[str] = None, timeout: Optional[float] = None
    ) -> None:
        settings = get_settings()
        self.url = url if url is not None else settings.receipt_scan_url
        self.timeout = (
            timeout if timeout is not None else settings.receipt_scan_timeout_secs
        )

    @property
    def configured(self) -> bool:
        return bool(self.url)

    def scan(self, image: bytes, content_type: str) -> ScannedReceipt:
        if not image:
            raise ValidationFailedError("Empty image")
        if len(image) > MAX_IMAGE_BYTES:
            raise ValidationFailedError("Image too large (max 5MB)")
        if not content_type.startswith("image/"):
            raise ValidationFailedError("Only image uploads can be scanned")
        if not self.configured:
            raise RuntimeError("Receipt scanning is not configured")

        body = json.dumps(
            {
                "mime_type": content_type,
                "image": base64.b64encode(image).decode("ascii"),
            }
        ).encode("utf-8")
        req = Request(
            self.url,
            data=body,
            method="POST",
            headers={"Content-Type": "application/json", "Accept": "application/json"},
        )
        try:
            with urlopen(req, timeout=self.timeout) as resp:
                payload = json.loads(resp.read().decode("utf-8"))
        except (URLError, TimeoutError, json.JSONDecodeError) as exc:
            raise RuntimeError("Failed to scan receipt") from exc

        if not isinstance(payload, dict):
            raise RuntimeError("Unexpected receipt scanner response")
        try:
            return ScannedReceipt.model_validate(payload)
        except ValidationError as exc:
            raise RuntimeError("Unexpected receipt scanner response") from exc


def match_category(
    raw: Optional[str], choices: Iterable[str] = EXPENSE_CATEGORIES
) -> Optional[str]:
    """Exact (case-insensitive) match, else a unique match within one edit."""
    value = (raw or "").strip().lower()
    if not value:
        return None
    options = list(choices)
    for option in options:
        if option.lower() == value:
            return option

    best_distance: Optional[int] = None
    best: list[str] = []
    for option in options:
        dist = int(Levenshtein.distance(value, option.lower()))
        if best_distance is None or dist < best_distance:
            best_distance = dist
            best = [option]
        elif dist == best_distance:
            best.append(option)
    if best_distance is not None and best_distance <= 1 and len(best) == 1:
        return best[0]
    return None


def build_prefill(scanned: ScannedReceipt) -> TransactionPrefill:
    """Turn scanner output into form suggestions.

    Anything that does not parse is dropped; the result still has to pass
    ``TransactionIn`` validation before a transaction is created.
    """
    amount: Optional[float] = None
    if scanned.amount is not None:
        try:
            amount = to_number(parse_amount(str(scanned.amount)))
        except ValueError:
            logger.info(f"receipt_prefill: dropped amount={scanned.amount!r}")

    txn_date: Optional[date] = None
    if scanned.date:
        try:
            txn_date = date.fromisoformat(scanned.date.strip()[:10])
        except ValueError:
            logger.info(f"receipt_prefill: dropped date={scanned.date!r}")

    description = (scanned.description or scanned.merchant_name or "").strip()

    return TransactionPrefill(
        amount=amount,
        date=txn_date,
        description=description[:200] or None,
        category=match_category(scanned.category),
    )
