"""Venue catalog gateway (local SQL tables or a remote catalog service)"""

from typing import Any, Dict, List, Optional

import requests
from sqlalchemy.orm import Session, selectinload

from whereto.config import settings
from whereto.db import City, VenueOverride, VenueRecord
from whereto.errors import UnavailableError
from whereto.geo import Point, bounding_box, haversine_distance
from whereto.logger import get_logger
from whereto.models import Venue, VenueOverrides, VenueView

# Logger
logger = get_logger("catalog")


class CatalogGateway:
    """Catalog interface used by the plan engine"""

    def search(
        self,
        center: Point,
        radius_m: float,
        category: Optional[str] = None,
        min_rating: Optional[float] = None,
        limit: int = 20,
    ) -> List[Venue]:
        raise NotImplementedError

    def get_by_id(self, venue_id: str) -> Optional[Venue]:
        raise NotImplementedError

    def city_center(self, city_id: str) -> Optional[Point]:
        raise NotImplementedError

    def apply_display_overrides(self, venue: Venue) -> VenueView:
        """Merge name/address/hours/pin/category corrections into a display view"""
        o = venue.overrides or VenueOverrides()
        lat, lng = venue.lat, venue.lng
        if o.lat is not None and o.lng is not None:
            lat, lng = o.lat, o.lng
        return VenueView(
            id=venue.id,
            name=o.name or venue.name,
            address=o.address or venue.address,
            lat=lat,
            lng=lng,
            categories=o.categories or venue.categories,
            rating=venue.rating,
            rating_count=venue.rating_count,
            photo_refs=venue.photo_refs,
            hours=o.hours or venue.hours,
            partner=venue.partner_active,
        )


def _to_venue(row: VenueRecord) -> Venue:
    overrides = None
    if row.override is not None:
        o = row.override
        overrides = VenueOverrides(
            name=o.name_override,
            address=o.address_override,
            hours=o.hours_override,
            lat=o.pin_lat,
            lng=o.pin_lng,
            categories=o.category_overrides,
            hidden=bool(o.hidden),
        )
    return Venue(
        id=row.id,
        city_id=row.city_id,
        name=row.name,
        address=row.address or "",
        lat=row.lat,
        lng=row.lng,
        categories=row.categories,
        rating=row.rating,
        rating_count=row.rating_count,
        photo_refs=row.photo_refs,
        hours=row.hours,
        status=row.status,
        partner_active=bool(row.partner is not None and row.partner.is_active),
        overrides=overrides,
    )


class SqlCatalogGateway(CatalogGateway):
    """Catalog backed by the local venue tables"""

    def __init__(self, db: Session):
        self.db = db

    def _visible(self):
        return (
            self.db.query(VenueRecord)
            .options(selectinload(VenueRecord.override), selectinload(VenueRecord.partner))
            .outerjoin(VenueOverride, VenueOverride.venue_id == VenueRecord.id)
            .filter(VenueRecord.status == "active")
            .filter((VenueOverride.id.is_(None)) | (VenueOverride.hidden == False))  # noqa: E712
        )

    def search(
        self,
        center: Point,
        radius_m: float,
        category: Optional[str] = None,
        min_rating: Optional[float] = None,
        limit: int = 20,
    ) -> List[Venue]:
        box = bounding_box(center, radius_m)
        query = self._visible().filter(
            VenueRecord.lat.isnot(None),
            VenueRecord.lng.isnot(None),
            VenueRecord.lat.between(box.min_lat, box.max_lat),
            VenueRecord.lng.between(box.min_lng, box.max_lng),
        )
        if min_rating is not None:
            query = query.filter(VenueRecord.rating >= min_rating)
        query = query.order_by(
            VenueRecord.rating.is_(None),
            VenueRecord.rating.desc(),
            VenueRecord.created_at.desc(),
        )

        venues: List[Venue] = []
        for row in query:
            # JSON containment is not portable; the category filter runs here
            if category and category not in (row.categories or []):
                continue
            if haversine_distance(center, Point(row.lat, row.lng)) > radius_m:
                continue
            venues.append(_to_venue(row))
            if len(venues) >= limit:
                break

        logger.debug(
            f"Catalog search ({center.lat:.5f}, {center.lng:.5f}) r={radius_m}m "
            f"category={category} min_rating={min_rating}: {len(venues)} venues"
        )
        return venues

    def get_by_id(self, venue_id: str) -> Optional[Venue]:
        row = self._visible().filter(VenueRecord.id == venue_id).first()
        return _to_venue(row) if row else None

    def city_center(self, city_id: str) -> Optional[Point]:
        city = self.db.get(City, city_id)
        if city is None:
            return None
        return Point(city.center_lat, city.center_lng)


class HttpCatalogGateway(CatalogGateway):
    """Catalog served by a remote catalog API"""

    def __init__(self, base_url: str, timeout: float = 10.0):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.headers = {"Accept": "application/json"}

    def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
        url = f"{self.base_url}{path}"
        try:
            response = requests.get(url, headers=self.headers, params=params, timeout=self.timeout)
            if response.status_code == 404:
                return None
            response.raise_for_status()
            return response.json()
        except requests.exceptions.RequestException as e:
            logger.error(f"Catalog API error ({url}): {e}")
            raise UnavailableError(f"Catalog service unavailable: {e}") from e

    def search(
        self,
        center: Point,
        radius_m: float,
        category: Optional[str] = None,
        min_rating: Optional[float] = None,
        limit: int = 20,
    ) -> List[Venue]:
        params: Dict[str, Any] = {
            "lat": center.lat,
            "lng": center.lng,
            "radiusMeters": int(radius_m),
            "limit": limit,
        }
        if category:
            params["category"] = category
        if min_rating is not None:
            params["minRating"] = min_rating

        data = self._get("/venues", params) or {}
        venues = [Venue.model_validate(item) for item in data.get("data", [])]
        return [v for v in venues if not (v.overrides and v.overrides.hidden)][:limit]

    def get_by_id(self, venue_id: str) -> Optional[Venue]:
        data = self._get(f"/venues/{venue_id}")
        if not data or not data.get("data"):
            return None
        return Venue.model_validate(data["data"])

    def city_center(self, city_id: str) -> Optional[Point]:
        data = self._get(f"/cities/{city_id}")
        city = (data or {}).get("data")
        if not city or city.get("center_lat") is None or city.get("center_lng") is None:
            return None
        return Point(float(city["center_lat"]), float(city["center_lng"]))


def build_catalog_gateway(db: Session) -> CatalogGateway:
    """Build the gateway selected by ``settings.catalog_backend``"""
    if settings.catalog_backend == "http":
        if not settings.catalog_base_url:
            raise ValueError("CATALOG_BASE_URL must be set when CATALOG_BACKEND=http")
        return HttpCatalogGateway(settings.catalog_base_url, timeout=settings.catalog_timeout)
    return SqlCatalogGateway(db)
