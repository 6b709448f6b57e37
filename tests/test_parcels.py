from __future__ import annotations

import json
import unittest
from typing import Any, Iterable, List, Mapping

from fastapi import FastAPI
from fastapi.testclient import TestClient

from localdata.parcels import (
    GeoJSONFormatter,
    ParcelArrayFormatter,
    ParcelFilterError,
    ParcelSource,
    parse_parcel_query,
    record_from_row,
)
from localdata.service import register_parcel_routes

POLYGON = {"type": "Polygon", "coordinates": [[[-83.08, 42.33], [-83.08, 42.34], [-83.07, 42.34], [-83.08, 42.33]]]}
CENTROID = {"type": "Point", "coordinates": [-83.077, 42.337]}


def _row(**overrides: Any) -> dict:
    row = {
        "object_id": " 1234 ",
        "name1": "3456 ",
        "name2": " GRAND RIVER",
        "polygon": json.dumps(POLYGON),
        "centroid": json.dumps(CENTROID),
        "type": "POLYGON ",
    }
    row.update(overrides)
    return row


class RecordingSource(ParcelSource):
    def __init__(self, rows: List[Mapping[str, Any]]) -> None:
        self.rows = rows
        self.calls: List[tuple] = []

    async def fetch(self, sql: str, params: List[str]) -> Iterable[Mapping[str, Any]]:
        self.calls.append((sql, params))
        return self.rows


class ParcelQueryTests(unittest.TestCase):
    def test_bbox_query_uses_intersects_polygon(self) -> None:
        query = parse_parcel_query("-83.0805,42.336,-83.08,42.34", None, None)
        sql, params = query.to_sql()

        self.assertIn("ST_Intersects", sql)
        self.assertIn("4326", sql)
        self.assertEqual(
            params,
            ["POLYGON((-83.0805 42.336, -83.0805 42.34, -83.08 42.34, -83.08 42.336, -83.0805 42.336))"],
        )

    def test_point_query_uses_contains(self) -> None:
        sql, params = parse_parcel_query(None, "-83.08076", "42.338").to_sql()

        self.assertIn("ST_Contains", sql)
        self.assertEqual(params, ["POINT(-83.08076 42.338)"])

    def test_filter_is_required(self) -> None:
        for bbox, lon, lat in [(None, None, None), (None, "-83.0", None), (None, None, "42.3")]:
            with self.assertRaises(ParcelFilterError) as ctx:
                parse_parcel_query(bbox, lon, lat)
            self.assertEqual(ctx.exception.status_code, 413)

    def test_bad_filters_are_rejected(self) -> None:
        cases = [
            ("1,2,3,4", "-83.0", None),
            ("1,2,3", None, None),
            ("1,2,three,4", None, None),
            ("1,2,nan,4", None, None),
            (None, "west", "42.3"),
        ]
        for bbox, lon, lat in cases:
            with self.assertRaises(ParcelFilterError) as ctx:
                parse_parcel_query(bbox, lon, lat)
            self.assertEqual(ctx.exception.status_code, 400)


class ParcelFormatterTests(unittest.TestCase):
    def test_record_from_row_cleans_values(self) -> None:
        record = record_from_row(_row(name2=None))

        self.assertEqual(record.parcel_id, "1234")
        self.assertEqual(record.address, "3456 ")
        self.assertEqual(record.polygon, POLYGON)
        self.assertEqual(record.type, "POLYGON")

    def test_array_formatter(self) -> None:
        formatter = ParcelArrayFormatter()
        formatter.add_record(record_from_row(_row()))

        self.assertEqual(
            formatter.finalize(),
            [
                {
                    "parcelId": "1234",
                    "address": "3456 GRAND RIVER",
                    "polygon": POLYGON,
                    "centroid": CENTROID,
                    "type": "POLYGON",
                }
            ],
        )

    def test_geojson_formatter(self) -> None:
        formatter = GeoJSONFormatter()
        self.assertEqual(formatter.finalize(), {"type": "FeatureCollection", "features": []})

        formatter.add_record(record_from_row(_row()))
        collection = formatter.finalize()
        feature = collection["features"][0]
        self.assertEqual(feature["type"], "Feature")
        self.assertEqual(feature["id"], "1234")
        self.assertEqual(feature["geometry"], POLYGON)
        self.assertEqual(feature["properties"], {"address": "3456 GRAND RIVER", "centroid": CENTROID})


class ParcelRouteTests(unittest.TestCase):
    def setUp(self) -> None:
        self.source = RecordingSource([_row()])
        app = FastAPI()
        register_parcel_routes(app, self.source)
        self.client = TestClient(app)

    def test_parcels_endpoint_returns_array(self) -> None:
        response = self.client.get("/api/parcels", params={"lon": "-83.08076", "lat": "42.338"})

        self.assertEqual(response.status_code, 200, response.text)
        self.assertEqual(response.json()[0]["parcelId"], "1234")
        self.assertEqual(self.source.calls[0][1], ["POINT(-83.08076 42.338)"])

    def test_geojson_endpoint_returns_feature_collection(self) -> None:
        response = self.client.get("/api/parcels.geojson", params={"bbox": "-83.0805,42.336,-83.08,42.34"})

        self.assertEqual(response.status_code, 200, response.text)
        self.assertEqual(response.json()["type"], "FeatureCollection")

    def test_filter_errors_map_to_status_codes(self) -> None:
        self.assertEqual(self.client.get("/api/parcels").status_code, 413)
        both = self.client.get("/api/parcels", params={"bbox": "1,2,3,4", "lon": "1", "lat": "2"})
        self.assertEqual(both.status_code, 400)
        self.assertEqual(self.source.calls, [])

    def test_malformed_rows_return_generic_error(self) -> None:
        self.source.rows = [_row(polygon="{not json")]
        response = self.client.get("/api/parcels", params={"lon": "1", "lat": "2"})

        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json(), {"detail": "Internal server error"})

    def test_source_failures_return_generic_error(self) -> None:
        class FailingSource(ParcelSource):
            async def fetch(self, sql: str, params: List[str]) -> Iterable[Mapping[str, Any]]:
                raise ConnectionError("could not connect to server: password authentication failed")

        app = FastAPI()
        register_parcel_routes(app, FailingSource())
        response = TestClient(app).get("/api/parcels", params={"bbox": "1,2,3,4"})

        self.assertEqual(response.status_code, 500)
        self.assertNotIn("password", response.text)


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
