"""Geo lookups — free-text geocoding and reverse geocoding.

Backed by Nominatim (OpenStreetMap), which is free and needs no API key
but requires a User-Agent header and allows about 1 request/second.
Results are cached on disk so repeated lookups never hit the service.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Optional

import httpx
from fastapi import APIRouter, HTTPException, Query
from loguru import logger
from pydantic import BaseModel, Field

from app.config import settings

router = APIRouter(prefix="/api/geo", tags=["geo"])

# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

_CACHE_DIR = Path(settings.geo_cache_dir).expanduser()
_GEOCODE_CACHE = _CACHE_DIR / "geocode"
_REVERSE_CACHE = _CACHE_DIR / "reverse"


# ---------------------------------------------------------------------------
# Request / Response models
# ---------------------------------------------------------------------------

class GeocodeRequest(BaseModel):
    """Free-text place search."""
    query: str
    limit: int = Field(default=5, ge=1, le=20)


class Place(BaseModel):
    """One geocoding hit."""
    lat: float
    lng: float
    display_name: str
    short_name: str


def short_name(display_name: str) -> str:
    """First two comma-separated parts: "Alexanderplatz, Mitte"."""
    parts = [p.strip() for p in display_name.split(",") if p.strip()]
    return ", ".join(parts[:2]) if parts else display_name


def _place(hit: dict, fallback: str = "") -> Place:
    name = hit.get("display_name") or fallback
    return Place(
        lat=float(hit["lat"]),
        lng=float(hit["lon"]),
        display_name=name,
        short_name=short_name(name),
    )


# ---------------------------------------------------------------------------
# Disk cache
# ---------------------------------------------------------------------------

def _cache_path(cache_dir: Path, key: str) -> Path:
    return cache_dir / f"{hashlib.sha256(key.encode()).hexdigest()}.json"


def _cache_read(path: Path):
    if not path.exists():
        return None
    try:
        return json.loads(path.read_text())
    except (OSError, ValueError) as e:
        logger.debug(f"Geo cache entry {path.name} unreadable, re-fetching: {e}")
        return None


def _cache_write(path: Path, data) -> None:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(data))
    except OSError as e:
        logger.debug(f"Geo cache write failed: {e}")


async def _nominatim(endpoint: str, params: dict):
    url = f"{settings.nominatim_url.rstrip('/')}/{endpoint}"
    async with httpx.AsyncClient() as client:
        try:
            resp = await client.get(
                url,
                params={**params, "format": "json"},
                headers={"User-Agent": settings.user_agent},
                timeout=settings.http_timeout,
            )
            resp.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning(f"Nominatim {endpoint} failed: {e}")
            raise HTTPException(status_code=502, detail="Geocoding service unavailable")
    try:
        return resp.json()
    except ValueError:
        raise HTTPException(status_code=502, detail="Geocoding service returned invalid JSON")


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post("/geocode", response_model=list[Place])
async def geocode(request: GeocodeRequest):
    """Search for places matching free text."""
    query = request.query.strip()
    if not query:
        raise HTTPException(status_code=400, detail="Query is required")

    cache_path = _cache_path(_GEOCODE_CACHE, f"{query.lower()}|{request.limit}")
    cached = _cache_read(cache_path)
    if cached is not None:
        return [Place(**p) for p in cached]

    results = await _nominatim("search", {"q": query, "limit": request.limit})
    places = []
    for hit in results or []:
        try:
            places.append(_place(hit, fallback=query))
        except (KeyError, TypeError, ValueError):
            continue

    if places:
        _cache_write(cache_path, [p.model_dump() for p in places])
    return places


@router.get("/reverse", response_model=Optional[Place])
async def reverse(
    lat: float = Query(ge=-90, le=90),
    lng: float = Query(ge=-180, le=180),
):
    """Nearest named place for a coordinate, or null."""
    cache_path = _cache_path(_REVERSE_CACHE, f"{lat:.6f},{lng:.6f}")
    cached = _cache_read(cache_path)
    if cached is not None:
        return Place(**cached)

    hit = await _nominatim("reverse", {"lat": lat, "lon": lng})
    if not hit or "error" in hit:
        return None
    try:
        place = _place(hit)
    except (KeyError, TypeError, ValueError):
        return None
    _cache_write(cache_path, place.model_dump())
    return place
