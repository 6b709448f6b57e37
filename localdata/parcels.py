"""Parcel lookup: spatial filter parsing, SQL translation and output shaping."""
from __future__ import annotations

import json
import math
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

PARCEL_COLUMNS = (
    "object_id, name1, name2, source, created, "
    "ST_AsGeoJSON(wkb_geometry) AS polygon, "
    "ST_AsGeoJSON(ST_Centroid(wkb_geometry)) AS centroid, "
    "GeometryType(wkb_geometry) AS type"
)


class ParcelFilterError(ValueError):
    """The request did not carry exactly one usable spatial filter."""

    def __init__(self, message: str, *, status_code: int = 400) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass(frozen=True)
class BoundingBox:
    west: float
    south: float
    east: float
    north: float

    def to_wkt(self) -> str:
        corners = [
            (self.west, self.south),
            (self.west, self.north),
            (self.east, self.north),
            (self.east, self.south),
            (self.west, self.south),
        ]
        ring = ", ".join(f"{lon!r} {lat!r}" for lon, lat in corners)
        return f"POLYGON(({ring}))"


@dataclass(frozen=True)
class Point:
    lon: float
    lat: float

    def to_wkt(self) -> str:
        return f"POINT({self.lon!r} {self.lat!r})"


@dataclass(frozen=True)
class ParcelQuery:
    bbox: Optional[BoundingBox] = None
    point: Optional[Point] = None

    def to_sql(self) -> Tuple[str, List[str]]:
        if self.bbox is not None:
            predicate = "ST_Intersects(wkb_geometry, ST_SetSRID(ST_GeomFromText(%s), 4326))"
            params = [self.bbox.to_wkt()]
        elif self.point is not None:
            predicate = "ST_Contains(wkb_geometry, ST_SetSRID(ST_GeomFromText(%s), 4326))"
            params = [self.point.to_wkt()]
        else:  # pragma: no cover - parse_parcel_query never builds an empty query
            raise ParcelFilterError("A bbox or point filter is required", status_code=413)
        return f"SELECT {PARCEL_COLUMNS} FROM objects WHERE {predicate}", params


def _parse_coordinate(raw: str) -> float:
    try:
        value = float(raw)
    except (TypeError, ValueError) as exc:
        raise ParcelFilterError(f"Invalid coordinate: {raw!r}") from exc
    if not math.isfinite(value):
        raise ParcelFilterError(f"Invalid coordinate: {raw!r}")
    return value


def parse_parcel_query(
    bbox: Optional[str],
    lon: Optional[str],
    lat: Optional[str],
) -> ParcelQuery:
    """Build a query from the ``bbox`` or ``lon``/``lat`` request parameters.

    Exactly one filter is required: none at all is rejected with 413 (the
    result set would be the whole table) and both at once with 400.
    """

    if bbox is None and (lon is None or lat is None):
        raise ParcelFilterError("A bbox or lon/lat filter is required", status_code=413)

    if bbox is not None:
        if lon is not None or lat is not None:
            raise ParcelFilterError("Use either bbox or lon/lat, not both")
        parts = bbox.split(",")
        if len(parts) != 4:
            raise ParcelFilterError("bbox must be west,south,east,north")
        west, south, east, north = (_parse_coordinate(part) for part in parts)
        return ParcelQuery(bbox=BoundingBox(west=west, south=south, east=east, north=north))

    return ParcelQuery(point=Point(lon=_parse_coordinate(lon), lat=_parse_coordinate(lat)))


def _clean(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


@dataclass(frozen=True)
class ParcelRecord:
    parcel_id: str
    address: str
    polygon: Any
    centroid: Any
    type: str


def record_from_row(row: Mapping[str, Any]) -> ParcelRecord:
    """Convert a database row into a :class:`ParcelRecord`."""

    return ParcelRecord(
        parcel_id=_clean(row.get("object_id")),
        address=f"{_clean(row.get('name1'))} {_clean(row.get('name2'))}",
        polygon=json.loads(row["polygon"]),
        centroid=json.loads(row["centroid"]),
        type=_clean(row.get("type")),
    )


class ParcelFormatter:
    """Accumulate parcel records and produce a response payload."""

    def add_record(self, record: ParcelRecord) -> None:
        raise NotImplementedError

    def finalize(self) -> Any:
        raise NotImplementedError


class ParcelArrayFormatter(ParcelFormatter):
    def __init__(self) -> None:
        self._output: List[Dict[str, Any]] = []

    def add_record(self, record: ParcelRecord) -> None:
        self._output.append(
            {
                "parcelId": record.parcel_id,
                "address": record.address,
                "polygon": record.polygon,
                "centroid": record.centroid,
                "type": record.type,
            }
        )

    def finalize(self) -> List[Dict[str, Any]]:
        return self._output


class GeoJSONFormatter(ParcelFormatter):
    def __init__(self) -> None:
        self._features: List[Dict[str, Any]] = []

    def add_record(self, record: ParcelRecord) -> None:
        self._features.append(
            {
                "type": "Feature",
                "id": record.parcel_id,
                "geometry": record.polygon,
                "properties": {
                    "address": record.address,
                    "centroid": record.centroid,
                },
            }
        )

    def finalize(self) -> Dict[str, Any]:
        return {"type": "FeatureCollection", "features": self._features}


class ParcelSource:
    """Spatial database collaborator that executes parcel queries."""

    async def fetch(self, sql: str, params: List[str]) -> Iterable[Mapping[str, Any]]:
        raise NotImplementedError


async def lookup_parcels(
    source: ParcelSource,
    query: ParcelQuery,
    formatter: ParcelFormatter,
) -> Any:
    sql, params = query.to_sql()
    rows = await source.fetch(sql, params)
    for row in rows:
        formatter.add_record(record_from_row(row))
    return formatter.finalize()


__all__ = [
    "BoundingBox",
    "GeoJSONFormatter",
    "ParcelArrayFormatter",
    "ParcelFilterError",
    "ParcelFormatter",
    "ParcelQuery",
    "ParcelRecord",
    "ParcelSource",
    "Point",
    "lookup_parcels",
    "parse_parcel_query",
    "record_from_row",
]
