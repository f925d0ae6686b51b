"""
Field Maintenance Ticketing
Site master data.

Models:
    - Location: a maintained site with the coordinate that work-location
      evidence is verified against.
"""

from datetime import datetime, timezone

from fieldops.models import db


class Location(db.Model):
    """Maintained site. ``geofence_radius_m`` overrides the default tolerance."""

    __tablename__ = "locations"

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(30), nullable=False, unique=True)
    name = db.Column(db.String(200), nullable=False)
    address = db.Column(db.Text, default="")

    latitude = db.Column(db.Float, nullable=True)
    longitude = db.Column(db.Float, nullable=True)
    geofence_radius_m = db.Column(
        db.Float, nullable=True,
        comment="Per-site tolerance in metres; falls back to GEOFENCE_TOLERANCE_METERS",
    )

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.CheckConstraint("latitude IS NULL OR (latitude >= -90 AND latitude <= 90)", name="ck_location_lat"),
        db.CheckConstraint("longitude IS NULL OR (longitude >= -180 AND longitude <= 180)", name="ck_location_lng"),
    )

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    def to_dict(self):
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "address": self.address,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "geofence_radius_m": self.geofence_radius_m,
            "is_active": self.is_active,
        }

    def __repr__(self):
        return f"<Location {self.id}: {self.code}>"
