"""Geometry helpers and spatial SQL conditions for listing search.

Conditions come back as opaque `Raw` predicate nodes: a SQL fragment with
named bind parameters. Callers AND them into a search without looking inside.

Coordinates are (lat, lng) pairs throughout. PostGIS points are stored as
POINT(lng lat) in SRID 4326.
"""

import math
import re
from collections.abc import Sequence

from .predicates import Raw

EARTH_RADIUS_MILES = 3959.0
EARTH_RADIUS_KM = 6371.0

SRID = 4326

Vertex = Sequence[float]


def _column(name: str) -> str:
    """Strip anything that is not a plain (optionally dotted) identifier."""
    return re.sub(r"[^a-zA-Z0-9_.]", "", name)


class SpatialService:
    """Pure geometry: distance, containment and spatial SQL conditions."""

    # -------------------------------------------------------------------------
    # Geometry
    # -------------------------------------------------------------------------

    def haversine_distance(self, lat1: float, lng1: float, lat2: float, lng2: float) -> float:
        """Great-circle distance in miles."""
        lat1_rad, lng1_rad = math.radians(lat1), math.radians(lng1)
        lat2_rad, lng2_rad = math.radians(lat2), math.radians(lng2)

        d_lat = lat2_rad - lat1_rad
        d_lng = lng2_rad - lng1_rad

        a = (
            math.sin(d_lat / 2) ** 2
            + math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(d_lng / 2) ** 2
        )
        return 2 * EARTH_RADIUS_MILES * math.asin(math.sqrt(a))

    def is_point_in_polygon(self, lat: float, lng: float, polygon: Sequence[Vertex]) -> bool:
        """Ray-casting containment test.

        Casts a ray from the point and counts edge crossings; an odd count
        means the point is inside.
        """
        count = len(polygon)
        if count < 3:
            return False

        inside = False
        j = count - 1
        for i in range(count):
            xi, yi = float(polygon[i][0]), float(polygon[i][1])
            xj, yj = float(polygon[j][0]), float(polygon[j][1])

            if (yi > lng) != (yj > lng) and lat < (xj - xi) * (lng - yi) / (yj - yi) + xi:
                inside = not inside
            j = i

        return inside

    def validate_coordinates(self, lat: float, lng: float) -> bool:
        return -90.0 <= lat <= 90.0 and -180.0 <= lng <= 180.0

    def validate_polygon(self, polygon: object) -> bool:
        """At least three numeric [lat, lng] points, all within range."""
        if not isinstance(polygon, (list, tuple)) or len(polygon) < 3:
            return False

        for point in polygon:
            if not isinstance(point, (list, tuple)) or len(point) < 2:
                return False
            lat, lng = point[0], point[1]
            if isinstance(lat, bool) or isinstance(lng, bool):
                return False
            if not isinstance(lat, (int, float)) or not isinstance(lng, (int, float)):
                return False
            if not self.validate_coordinates(float(lat), float(lng)):
                return False

        return True

    def close_polygon(self, polygon: Sequence[Vertex]) -> list[Vertex]:
        """Append the first vertex when the ring is not already closed."""
        ring = list(polygon)
        if not ring:
            return ring

        first, last = ring[0], ring[-1]
        if float(first[0]) != float(last[0]) or float(first[1]) != float(last[1]):
            ring.append(first)
        return ring

    # -------------------------------------------------------------------------
    # SQL conditions over latitude / longitude columns
    # -------------------------------------------------------------------------

    def build_radius_condition(
        self,
        lat: float,
        lng: float,
        radius_miles: float,
        lat_column: str = "latitude",
        lng_column: str = "longitude",
    ) -> Raw:
        """Spherical law of cosines distance <= radius."""
        lat_col, lng_col = _column(lat_column), _column(lng_column)
        sql = (
            f"({EARTH_RADIUS_MILES:g} * ACOS(COS(RADIANS(:radius_lat)) * COS(RADIANS({lat_col})) "
            f"* COS(RADIANS({lng_col}) - RADIANS(:radius_lng)) "
            f"+ SIN(RADIANS(:radius_lat)) * SIN(RADIANS({lat_col})))) <= :radius_miles"
        )
        return Raw(sql, (
            ("radius_lat", float(lat)),
            ("radius_lng", float(lng)),
            ("radius_miles", float(radius_miles)),
        ))

    def build_bounds_condition(
        self,
        north: float,
        south: float,
        east: float,
        west: float,
        lat_column: str = "latitude",
        lng_column: str = "longitude",
    ) -> Raw:
        lat_col, lng_col = _column(lat_column), _column(lng_column)
        sql = (
            f"({lat_col} BETWEEN :bounds_south AND :bounds_north "
            f"AND {lng_col} BETWEEN :bounds_west AND :bounds_east)"
        )
        return Raw(sql, (
            ("bounds_south", float(south)),
            ("bounds_north", float(north)),
            ("bounds_west", float(west)),
            ("bounds_east", float(east)),
        ))

    def build_polygon_condition(
        self,
        polygon: Sequence[Vertex],
        lat_column: str = "latitude",
        lng_column: str = "longitude",
    ) -> Raw:
        """Ray casting in SQL for tables without a geometry column.

        Each edge contributes 1 when a ray from the row's point crosses it;
        the sum modulo 2 decides containment. Edges parallel to the ray can
        never be crossed and are left out, which also keeps the division
        below away from zero.
        """
        lat_col, lng_col = _column(lat_column), _column(lng_column)
        ring = self.close_polygon(polygon)

        edges: list[str] = []
        params: list[tuple[str, float]] = []
        for i in range(len(ring) - 1):
            lat1, lng1 = float(ring[i][0]), float(ring[i][1])
            lat2, lng2 = float(ring[i + 1][0]), float(ring[i + 1][1])
            if lng1 == lng2:
                continue

            p = f"edge{i}"
            edges.append(
                f"CASE WHEN ((:{p}_lng1 > {lng_col}) <> (:{p}_lng2 > {lng_col})) "
                f"AND ({lat_col} < (:{p}_lat2 - :{p}_lat1) * ({lng_col} - :{p}_lng1) "
                f"/ (:{p}_lng2 - :{p}_lng1) + :{p}_lat1) THEN 1 ELSE 0 END"
            )
            params.extend([
                (f"{p}_lat1", lat1),
                (f"{p}_lng1", lng1),
                (f"{p}_lat2", lat2),
                (f"{p}_lng2", lng2),
            ])

        if not edges:
            # Degenerate ring (all vertices on one meridian) contains nothing
            return Raw("1 = 0")

        crossing_sum = " + ".join(edges)
        return Raw(f"(MOD({crossing_sum}, 2) = 1)", tuple(params))

    # -------------------------------------------------------------------------
    # SQL conditions over a PostGIS geometry column
    # -------------------------------------------------------------------------

    def build_spatial_bounds_condition(
        self,
        max_lat: float,
        min_lat: float,
        max_lng: float,
        min_lng: float,
        coord_column: str = "coordinates",
    ) -> Raw:
        """Point inside the lat/lng envelope; uses the spatial index."""
        col = _column(coord_column)
        sql = (
            f"ST_Intersects({col}, ST_MakeEnvelope(:bounds_min_lng, :bounds_min_lat, "
            f":bounds_max_lng, :bounds_max_lat, {SRID}))"
        )
        return Raw(sql, (
            ("bounds_min_lng", float(min_lng)),
            ("bounds_min_lat", float(min_lat)),
            ("bounds_max_lng", float(max_lng)),
            ("bounds_max_lat", float(max_lat)),
        ))

    def build_spatial_polygon_condition(
        self,
        polygon: Sequence[Vertex],
        coord_column: str = "coordinates",
    ) -> Raw:
        """Point inside the polygon; the ring is closed if needed."""
        col = _column(coord_column)
        return Raw(
            f"ST_Contains(ST_GeomFromText(:polygon_wkt, {SRID}), {col})",
            (("polygon_wkt", self.polygon_wkt(polygon)),),
        )

    def polygon_wkt(self, polygon: Sequence[Vertex]) -> str:
        """WKT for a [lat, lng] ring. WKT wants x (lng) before y (lat)."""
        ring = self.close_polygon(polygon)
        points = ", ".join(f"{float(lng)!r} {float(lat)!r}" for lat, lng, *_ in ring)
        return f"POLYGON(({points}))"
