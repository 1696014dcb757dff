from config import PLACE_ID_PRECISION
from core.models import CanonicalVisit


def coordinate_place_id(lat: float, lon: float) -> str:
    """Synthetic place id for visits the export did not attach a place to"""
    return f"coord_{lat:.{PLACE_ID_PRECISION}f}_{lon:.{PLACE_ID_PRECISION}f}"


def resolve_place_id(visit: CanonicalVisit) -> str:
    """
    Content address of the place a visit refers to

    The id depends only on the export's own place id or the visit coordinates,
    never on the user or the import run, so every user visiting the same place
    shares one Place row and its enrichment.
    """
    source_id = visit.place_id.strip() if isinstance(visit.place_id, str) else None
    if source_id:
        return source_id
    return coordinate_place_id(visit.lat, visit.lon)
