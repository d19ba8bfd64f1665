import hashlib
from typing import List, Tuple

from listing_deck.normalize import normalize_address, normalize_text


def _clean_ref(value: object) -> str:
    if value is None or isinstance(value, bool):
        return ""
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip()


def compute_listing_id(
    upstream_id: object,
    url: object,
    *,
    address: str,
    city: str,
    state: str,
    zip_code: str,
) -> Tuple[str, List[str]]:
    """Return a cache id that is stable across refreshes of the same listing.

    Upstream ids win, then the listing URL; otherwise the id is a digest of the
    normalized address so that re-fetching upserts instead of duplicating.
    """
    warnings: List[str] = []
    ref = _clean_ref(upstream_id)
    if ref:
        return ref, warnings
    ref = _clean_ref(url)
    if ref:
        warnings.append("Missing upstream id; using listing URL as id.")
        return ref, warnings
    situs = normalize_address(address)
    locality = "|".join(normalize_text(v) for v in (city, state, zip_code))
    if not situs and not locality.strip("|"):
        warnings.append("Missing id, URL and address; fallback id may collide.")
    warnings.append("Used fallback identity (address+city+state+zip hash).")
    seed = f"{situs}|{locality}"
    digest = hashlib.sha256(seed.encode("utf-8")).hexdigest()
    return f"gen:{digest[:32]}", warnings

