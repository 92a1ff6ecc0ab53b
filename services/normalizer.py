# services/normalizer.py
"""
Raw scraped record -> NormalizedRecord.

Pure functions only: no I/O, no logging side effects beyond warnings about
dropped sizes. Anything that cannot be trusted enough to show to end users
(price first of all) is rejected rather than patched with a placeholder.
"""
from __future__ import annotations

import logging
import math
import re
import unicodedata
from typing import Any, Dict, List, Optional

from services.errors import EmptySizeLabel, InvalidPrice, InvalidSku, MissingField
from services.models import NormalizedRecord, SizeEntry

logger = logging.getLogger(__name__)

MIN_SKU_LENGTH = 3
BRAND_SKU_LEN = 15
MODEL_SKU_LEN = 25

PRICE_CHARS_RE = re.compile(r"[^0-9.,]")
# leading number only, "89.99." -> 89.99
PRICE_NUM_RE = re.compile(r"\d*\.?\d+")
NON_ALNUM_RE = re.compile(r"[^a-z0-9]")
WS_RE = re.compile(r"\s+")
# unit token glued to the number ("EU41") or separated by spaces ("41 EU")
SIZE_PREFIX_RE = re.compile(r"^(?:eur|eu|us|uk)(?=[\s\d.])\s*", re.I)
SIZE_SUFFIX_RE = re.compile(r"(?<=[\s\d.])\s*(?:eur|eu|us|uk)$", re.I)
UNIT_TOKENS = {"eur", "eu", "us", "uk"}

BRAND_ALIASES: Dict[str, str] = {
    "nike": "Nike",
    "adidas": "Adidas",
    "new balance": "New Balance",
    "newbalance": "New Balance",
    "nb": "New Balance",
    "puma": "Puma",
    "reebok": "Reebok",
    "asics": "Asics",
    "converse": "Converse",
    "vans": "Vans",
    "jordan": "Jordan",
    "air jordan": "Jordan",
    "under armour": "Under Armour",
    "ua": "Under Armour",
    "saucony": "Saucony",
    "fila": "Fila",
    "salomon": "Salomon",
}

# whole-word match, longest alias first ("new balance" before "nb")
_BRAND_WORD_RE = re.compile(
    r"\b(" + "|".join(re.escape(k) for k in sorted(BRAND_ALIASES, key=len, reverse=True)) + r")\b"
)

TRUTHY = {"true", "1", "yes", "y", "si", "sí", "available", "in stock"}


def clean(s: Any) -> str:
    # feeds sometimes carry numbers where text is expected (modelo: 530)
    if s is None:
        return ""
    return WS_RE.sub(" ", str(s)).strip()


def strip_accents(s: str) -> str:
    return "".join(
        ch for ch in unicodedata.normalize("NFD", s) if unicodedata.category(ch) != "Mn"
    )


# ---------------------------------------------------------------------------
# Field normalizers

def normalize_brand(raw: Optional[str]) -> str:
    brand = clean(raw).lower()
    if not brand:
        return ""
    if brand in BRAND_ALIASES:
        return BRAND_ALIASES[brand]
    m = _BRAND_WORD_RE.search(brand)
    if m:
        return BRAND_ALIASES[m.group(1)]
    return " ".join(w[:1].upper() + w[1:] for w in brand.split(" "))


def parse_price(raw: Any) -> float:
    """
    Accepts 89.99, "89,99", "€ 89,99", "89.99 EUR", "89,99 €.".
    Only the leading number counts once currency noise is stripped.
    Raises InvalidPrice for missing, unparseable, NaN or non-positive values.
    """
    if raw is None or isinstance(raw, bool):
        raise InvalidPrice(f"Price missing or not a number: {raw!r}")

    if isinstance(raw, (int, float)):
        value = float(raw)
    else:
        txt = PRICE_CHARS_RE.sub("", str(raw)).replace(",", ".")
        m = PRICE_NUM_RE.match(txt)
        if not m:
            raise InvalidPrice(f"Invalid price: {raw!r}")
        value = float(m.group(0))

    if math.isnan(value) or math.isinf(value) or value <= 0:
        raise InvalidPrice(f"Invalid price: {raw!r}")
    return round(value, 2)


def normalize_size_label(raw: Any) -> str:
    """
    '40,5' -> '40.5', 'EU 41' -> '41', '42' -> '42'.
    The numeric part is never reformatted.
    """
    label = clean(str(raw) if raw is not None else "")
    label = label.replace(",", ".")
    label = SIZE_PREFIX_RE.sub("", label)
    label = SIZE_SUFFIX_RE.sub("", label).strip()
    if not label or label.lower() in UNIT_TOKENS:
        raise EmptySizeLabel(f"Empty size label: {raw!r}")
    return label


def normalize_availability(raw: Any) -> bool:
    # missing availability means unavailable
    if raw is None:
        return False
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, str):
        return raw.strip().lower() in TRUTHY
    return bool(raw)


def normalize_sizes(raw_sizes: Any) -> List[SizeEntry]:
    """Drops empty labels; duplicates collapse into one entry (available if any is)."""
    merged: Dict[str, bool] = {}
    if raw_sizes and not isinstance(raw_sizes, list):
        logger.warning("Ignoring tallas that is not a list: %r", raw_sizes)
        return []
    for item in raw_sizes or []:
        if not isinstance(item, dict):
            logger.warning("Ignoring size entry that is not an object: %r", item)
            continue
        try:
            label = normalize_size_label(item.get("talla"))
        except EmptySizeLabel as e:
            logger.warning("Dropping size: %s", e)
            continue
        available = normalize_availability(item.get("disponible"))
        merged[label] = merged.get(label, False) or available
    return [SizeEntry(label=k, available=v) for k, v in merged.items()]


def _sku_part(text: str, limit: int) -> str:
    return NON_ALNUM_RE.sub("", strip_accents(text.lower()))[:limit]


def generate_sku(brand: str, model: str) -> str:
    """
    Deterministic SKU for listings that ship without one:
    '<brand>-<model>-<hash8>'. Case and accent variants of the same
    brand/model pair give the same SKU.
    """
    brand_key = _sku_part(brand or "", BRAND_SKU_LEN)

    model_txt = strip_accents((model or "").lower()).strip()
    brand_txt = strip_accents((brand or "").lower()).strip()
    if brand_txt:
        if model_txt.startswith(brand_txt):
            model_txt = model_txt[len(brand_txt):]
        else:
            model_txt = model_txt.replace(brand_txt, "", 1)
    # model that is nothing but the brand name: keep it whole
    model_key = _sku_part(model_txt, MODEL_SKU_LEN) or _sku_part(model or "", MODEL_SKU_LEN)

    if not brand_key or not model_key:
        raise InvalidSku(f"Cannot generate SKU from brand={brand!r} model={model!r}")

    key = f"{brand_key}-{model_key}"
    h = 0
    for ch in key:
        h = (h * 31 + ord(ch)) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return f"{key}-{abs(h) % 100_000_000:08d}"


def sanitize_sku(raw: Any) -> str:
    if raw is None:
        return ""
    return clean(str(raw))


def normalize_url(raw: Any) -> str:
    url = clean(raw)
    if url and not url.lower().startswith(("http://", "https://")):
        logger.warning("URL without scheme (%s), prefixing http://", url)
        url = "http://" + url
    return url


# ---------------------------------------------------------------------------
# Record

def normalize(raw: Dict[str, Any], store_id: Optional[int] = None) -> NormalizedRecord:
    """
    Validate and canonicalize one raw scraped record.

    `store_id` overrides the record's own `tienda_id` (the orchestrator knows
    which store it is running). Raises a NormalizationError subclass.
    """
    brand = normalize_brand(raw.get("marca"))
    if not brand:
        raise MissingField("marca")
    model = clean(raw.get("modelo"))
    if not model:
        raise MissingField("modelo")

    price = parse_price(raw.get("precio"))

    url = normalize_url(raw.get("url_producto"))
    if not url:
        raise MissingField("url_producto")

    sid = store_id if store_id is not None else raw.get("tienda_id")
    try:
        sid = int(sid)
    except (TypeError, ValueError):
        raise MissingField("tienda_id") from None

    sku = sanitize_sku(raw.get("sku"))
    generated = False
    if len(sku) < MIN_SKU_LENGTH:
        sku = generate_sku(brand, model)
        generated = True

    return NormalizedRecord(
        brand=brand,
        model=model,
        sku=sku,
        price=price,
        url=url,
        store_id=sid,
        sizes=normalize_sizes(raw.get("tallas")),
        image=clean(raw.get("imagen")) or None,
        description=clean(raw.get("descripcion")) or None,
        store_model=clean(raw.get("modelo_tienda")),
        generated_sku=generated,
    )
