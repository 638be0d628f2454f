from sqlalchemy import Column, String, Float, DateTime, Index
from datetime import datetime
from models.base import Base, BigIntegerPK, JSONType, ClinicPackage, ClinicStatus, value_enum


class Clinic(Base):
    """
    Canonical clinic listing.

    Field groups:
    - Identity: id (store-assigned), slug (unique, immutable once assigned)
    - Location: address, city, state, zip, country, lat/lng (only when geocoded)
    - Contact: phone, website, email
    - Classification: services, tier, package, status
    - Quality: tags, import_source, validation_status {verified, method, websiteOK}
    - Traffic: traffic_meta, owned by the traffic tracker; the importer only
      initializes it
    """
    __tablename__ = "clinics"

    id = Column(BigIntegerPK, primary_key=True, autoincrement=True)
    slug = Column(String(255), nullable=False)

    name = Column(String(500), nullable=False, index=True)

    # Location
    address = Column(String(500), nullable=False, default="")
    city = Column(String(200), nullable=False, index=True)
    state = Column(String(100), nullable=False, index=True)
    zip = Column(String(20), nullable=False, default="", index=True)
    country = Column(String(100), nullable=False, default="USA")
    lat = Column(Float, nullable=True)
    lng = Column(Float, nullable=True)

    # Contact
    phone = Column(String(50), nullable=False, default="", index=True)
    website = Column(String(2048), nullable=False, default="")
    email = Column(String(320), nullable=False, default="")

    # Classification
    services = Column(JSONType, nullable=False, default=list)
    tier = Column(value_enum(ClinicPackage), nullable=False, default=ClinicPackage.BASIC)
    package = Column(value_enum(ClinicPackage), nullable=False, default=ClinicPackage.BASIC)
    status = Column(value_enum(ClinicStatus), nullable=False, default=ClinicStatus.ACTIVE, index=True)

    # Quality metadata
    tags = Column(JSONType, nullable=False, default=list)
    import_source = Column(String(100), nullable=True)
    validation_status = Column(JSONType, nullable=False, default=dict)
    traffic_meta = Column(JSONType, nullable=False, default=dict)

    # Timestamps and actor
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    last_updated = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)
    last_updated_by = Column(String(100), nullable=True)

    __table_args__ = (
        Index("idx_clinic_slug", "slug", unique=True),
        Index("idx_clinic_name_zip", "name", "zip"),
        Index("idx_clinic_address", "address", "city", "state"),
    )

    def to_dict(self):
        """Plain-dict view used by dedupe and merge"""
        return {
            "id": self.id,
            "slug": self.slug,
            "name": self.name,
            "address": self.address,
            "city": self.city,
            "state": self.state,
            "zip": self.zip,
            "country": self.country,
            "lat": self.lat,
            "lng": self.lng,
            "phone": self.phone,
            "website": self.website,
            "email": self.email,
            "services": list(self.services or []),
            "tier": self.tier.value if isinstance(self.tier, ClinicPackage) else self.tier,
            "package": self.package.value if isinstance(self.package, ClinicPackage) else self.package,
            "status": self.status.value if isinstance(self.status, ClinicStatus) else self.status,
            "tags": list(self.tags or []),
            "import_source": self.import_source,
            "validation_status": dict(self.validation_status or {}),
            "traffic_meta": dict(self.traffic_meta or {}),
            "created_at": self.created_at,
            "last_updated": self.last_updated,
            "last_updated_by": self.last_updated_by,
        }
