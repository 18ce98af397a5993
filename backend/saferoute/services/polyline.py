"""Encoded polyline format (Google's algorithm).

Both functions are pure. GraphHopper and Google use precision 5;
Valhalla-style encoders use precision 6.
"""

from typing import List, Sequence

from saferoute.schemas.common import Coordinate


def _decode_value(encoded: str, index: int):
    shift = 0
    result = 0
    while True:
        if index >= len(encoded):
            raise ValueError("Truncated polyline")
        b = ord(encoded[index]) - 63
        if b < 0 or b > 63:
            raise ValueError(f"Invalid polyline character at position {index}")
        index += 1
        result |= (b & 0x1F) << shift
        shift += 5
        if b < 0x20:
            break
    value = ~(result >> 1) if result & 1 else result >> 1
    return value, index


def decode_polyline(encoded: str, precision: int = 5) -> List[Coordinate]:
    """Decode an encoded polyline into coordinates in travel order."""
    factor = 10 ** precision
    coordinates = []
    index = 0
    lat = 0
    lng = 0

    while index < len(encoded):
        dlat, index = _decode_value(encoded, index)
        lat += dlat
        dlng, index = _decode_value(encoded, index)
        lng += dlng
        coordinates.append(Coordinate(lat=lat / factor, lng=lng / factor))

    return coordinates


def _encode_value(value: int) -> str:
    value = ~(value << 1) if value < 0 else value << 1
    chunks = []
    while value >= 0x20:
        chunks.append(chr((0x20 | (value & 0x1F)) + 63))
        value >>= 5
    chunks.append(chr(value + 63))
    return "".join(chunks)


def encode_polyline(points: Sequence[Coordinate], precision: int = 5) -> str:
    """Encode coordinates into a polyline string."""
    factor = 10 ** precision
    output = []
    prev_lat = 0
    prev_lng = 0
    for point in points:
        lat = round(point.lat * factor)
        lng = round(point.lng * factor)
        output.append(_encode_value(lat - prev_lat))
        output.append(_encode_value(lng - prev_lng))
        prev_lat, prev_lng = lat, lng
    return "".join(output)
