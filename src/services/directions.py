from __future__ import annotations

import urllib.parse
from typing import Dict, Optional

from models import Coordinate


def _latlon(c: Coordinate) -> str:
    return f"{c.latitude},{c.longitude}"


def google_directions_url(destination: Coordinate, origin: Optional[Coordinate] = None) -> str:
    params = {"api": "1", "destination": _latlon(destination)}
    if origin is not None:
        params["origin"] = _latlon(origin)
    return "https://www.google.com/maps/dir/?" + urllib.parse.urlencode(params, safe=",")


def google_search_url(destination: Coordinate) -> str:
    params = {"api": "1", "query": _latlon(destination)}
    return "https://www.google.com/maps/search/?" + urllib.parse.urlencode(params, safe=",")


def apple_maps_url(destination: Coordinate, origin: Optional[Coordinate] = None) -> str:
    params: dict[str, str] = {}
    if origin is not None:
        params["saddr"] = _latlon(origin)
    params["daddr"] = _latlon(destination)
    params["dirflg"] = "d"  # driving
    return "maps://app?" + urllib.parse.urlencode(params, safe=",")


def android_navigation_url(destination: Coordinate) -> str:
    return f"google.navigation:q={_latlon(destination)}"


def directions_links(destination: Coordinate, origin: Optional[Coordinate] = None) -> Dict[str, str]:
    """All deep links a client may try, in the order a client should fall back through them."""
    return {
        "ios": apple_maps_url(destination, origin),
        "android": android_navigation_url(destination),
        "web": google_directions_url(destination, origin),
        "search": google_search_url(destination),
    }
