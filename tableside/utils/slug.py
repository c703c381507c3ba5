import re
import unicodedata

SLUG_MAX_LENGTH = 80


def normalize_slug(value: str) -> str:
    if not value:
        return ""

    value = unicodedata.normalize("NFKD", value)
    value = value.encode("ascii", "ignore").decode("ascii")
    slug = re.sub(r"[^a-z0-9]+", "-", value.lower()).strip("-")
    return re.sub(r"-{2,}", "-", slug)


def slug_candidates(name: str, *, fallback: str = "restaurant", max_suffix: int = 9999):
    """Yield the base slug, then base-2, base-3, ... up to max_suffix."""
    base = normalize_slug(name)[:70].strip("-") or fallback
    if len(base) < 3:
        base = f"{base}-{fallback}"
    yield base
    for suffix in range(2, max_suffix + 1):
        yield f"{base}-{suffix}"[:SLUG_MAX_LENGTH].strip("-")
