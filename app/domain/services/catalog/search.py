"""
Search query normalization.

Customers type in Bangla, English or a mix of both and misspell freely. The
catalog search only understands English keywords, so queries are mapped to a
canonical form and expanded into a few keyword variants.
"""
import re
import unicodedata
from typing import Any, Awaitable, Callable, Optional

from app.core.exceptions import AppException
from app.core.logging import get_logger

logger = get_logger(__name__)

# Letters of the Bengali block count as word characters for the boundaries
_WORD_CHARS = r"a-z0-9ঀ-৿"

_REPLACEMENTS = [
    ("sshirt", "shirt"),
    ("tshart", "tshirt"),
    ("t-shirt", "tshirt"),
    ("smarwatch", "smartwatch"),
    ("earbud", "earbuds"),
    ("airbud", "earbuds"),
    ("mobil", "mobile"),
    ("মোবাইল", "mobile"),
    ("ঘড়ি", "watch"),
    ("ঘড়ী", "watch"),
    ("শার্ট", "shirt"),
]

_PATTERNS = [
    (
        re.compile(
            rf"(?<![{_WORD_CHARS}]){re.escape(unicodedata.normalize('NFC', source))}(?![{_WORD_CHARS}])"
        ),
        target,
    )
    for source, target in _REPLACEMENTS
]

_VARIANTS = [
    ("tshirt", "t shirt"),
    ("watch", "smartwatch"),
    ("earbuds", "earbud"),
]

_TOKEN_SPLIT = re.compile(r"[^a-z0-9]+")


def normalize_search_query(raw: str | None) -> str:
    """
    Canonical English keyword string for a free-text query.

    Lowercases, applies the misspelling/Bangla map on word boundaries, keeps
    ASCII tokens longer than one character and removes duplicates.

    >>> normalize_search_query("ঘড়ি দেখান")
    'watch'
    """
    text = unicodedata.normalize("NFC", str(raw or "")).lower()
    for pattern, target in _PATTERNS:
        text = pattern.sub(target, text)

    seen: dict[str, None] = {}
    for token in _TOKEN_SPLIT.split(text):
        if len(token) > 1:
            seen.setdefault(token, None)
    return " ".join(seen).strip()


def expand_query_variants(query: str) -> list[str]:
    """The query itself followed by its keyword variants, without duplicates"""
    variants: dict[str, None] = {query: None}
    for needle, replacement in _VARIANTS:
        if needle in query:
            variants.setdefault(query.replace(needle, replacement), None)
    return [v for v in variants if v]


async def search_with_variants(
    fetch: Callable[[str], Awaitable[list[dict[str, Any]]]],
    raw_query: str,
    per_page: int,
) -> list[dict[str, Any]]:
    """
    Try each variant until `per_page` products accumulate.

    Args:
        fetch: Callable running one catalog search for a keyword string
        raw_query: Query as typed by the customer or the model
        per_page: Wanted number of products

    Returns:
        Products deduplicated by id, at most `per_page`

    Raises:
        AppException: every variant failed
    """
    normalized = normalize_search_query(raw_query)
    candidates = expand_query_variants(normalized) or [raw_query.strip()]

    results: list[dict[str, Any]] = []
    failure: Optional[AppException] = None
    succeeded = False
    for keyword in candidates:
        try:
            found = await fetch(keyword)
        except AppException as e:
            logger.warning(
                "Search variant failed",
                extra_data={"keyword": keyword, "error": e.code}
            )
            failure = e
            continue
        succeeded = True
        results.extend(found)
        if len(results) >= per_page:
            break

    if not succeeded and failure is not None:
        raise failure

    seen_ids: set[Any] = set()
    unique = []
    for product in results:
        if not product or product.get("id") in seen_ids:
            continue
        seen_ids.add(product.get("id"))
        unique.append(product)
    return unique[:per_page]
