from .geometry import GeoPoint, Road, WGS84
from .accident import AccidentKey, AccidentPoint, ACCIDENT_KEY_COLUMNS

__all__ = [
    "GeoPoint",
    "Road",
    "WGS84",
    "AccidentKey",
    "AccidentPoint",
    "ACCIDENT_KEY_COLUMNS",
]
