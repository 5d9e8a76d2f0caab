from dataclasses import dataclass, astuple
from typing import Any, Dict

from .geometry import GeoPoint

# Columns that together identify one accident record
ACCIDENT_KEY_COLUMNS = [
    "document_type",
    "report_year",
    "prefecture",
    "police_code",
    "report_number",
]


@dataclass(frozen=True)
class AccidentKey:
    """
    Identifier of a source accident record.
    """

    document_type: Any
    report_year: int
    prefecture: Any
    police_code: Any
    report_number: Any

    def as_tuple(self) -> tuple:
        return astuple(self)

    def as_dict(self) -> Dict[str, Any]:
        return dict(zip(ACCIDENT_KEY_COLUMNS, self.as_tuple()))

    @classmethod
    def from_mapping(cls, row) -> "AccidentKey":
        return cls(*(row[column] for column in ACCIDENT_KEY_COLUMNS))


@dataclass(frozen=True)
class AccidentPoint:
    """Location of one accident in geographic coordinates."""

    key: AccidentKey
    point: GeoPoint
