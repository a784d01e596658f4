"""
Firestore query helpers.

Proximity searches are done as a latitude range query (Firestore allows range
filters on a single field) followed by exact haversine filtering in Python.
"""

from typing import Any, Dict, Iterator


def where_filter(query, field_path: str, op_string: str, value):
    """
    Helper function for Firestore queries.

    Usage:
        query = where_filter(collection, "status", "==", "new")
        query = where_filter(query, "latitude", ">=", 12.9)
    """
    return query.where(field_path, op_string, value)


def latitude_band(query, lat_min: float, lat_max: float):
    query = where_filter(query, "latitude", ">=", lat_min)
    return where_filter(query, "latitude", "<=", lat_max)


def stream_dicts(query) -> Iterator[Dict[str, Any]]:
    """Stream documents as dicts with the document id under "id"."""
    for doc in query.stream():
        data = doc.to_dict() or {}
        data.setdefault("id", doc.id)
        yield data
