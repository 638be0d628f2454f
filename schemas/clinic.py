"""
Pydantic schemas for canonical clinic records
"""

from pydantic import BaseModel, Field, validator
from typing import Optional, List, Dict, Any
from datetime import datetime
from models.base import ClinicPackage, ClinicStatus


class Coordinates(BaseModel):
    """Geocoding result"""
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


class ValidationStatus(BaseModel):
    """Stored as {"verified", "method", "websiteOK"}"""
    verified: bool = False
    method: str = "auto"
    website_ok: bool = Field(False, alias="websiteOK")

    class Config:
        populate_by_name = True


class TrafficMeta(BaseModel):
    """Initialized on import, mutated only by the traffic tracker"""
    total_clicks: int = Field(0, alias="totalClicks")
    top_search_terms: List[str] = Field(default_factory=list, alias="topSearchTerms")
    last_viewed: Optional[datetime] = Field(None, alias="lastViewed")

    class Config:
        populate_by_name = True


class ClinicCreate(BaseModel):
    """
    Canonical clinic produced by the record processor.

    Ensures:
    - name, city and state are present
    - services and tags are de-duplicated, order preserved
    - lat/lng are either both present or both absent
    """

    slug: str = Field(..., min_length=1, max_length=255)
    name: str = Field(..., min_length=1, max_length=500)

    # Location
    address: str = ""
    city: str = Field(..., min_length=1, max_length=200)
    state: str = Field(..., min_length=1, max_length=100)
    zip: str = ""
    country: str = "USA"
    lat: Optional[float] = None
    lng: Optional[float] = None

    # Contact
    phone: str = ""
    website: str = ""
    email: str = ""

    # Classification
    services: List[str] = Field(default_factory=list)
    tier: ClinicPackage = ClinicPackage.BASIC
    package: ClinicPackage = ClinicPackage.BASIC
    status: ClinicStatus = ClinicStatus.ACTIVE

    # Quality metadata
    tags: List[str] = Field(default_factory=list)
    import_source: Optional[str] = None
    validation_status: ValidationStatus = Field(default_factory=ValidationStatus)
    traffic_meta: TrafficMeta = Field(default_factory=TrafficMeta)

    # Timestamps
    created_at: datetime
    last_updated: datetime

    @validator("services", "tags", pre=True)
    def dedupe_list(cls, v):
        """Ensure a de-duplicated list of non-empty strings"""
        if v is None:
            return []
        if isinstance(v, str):
            v = [v]
        seen = []
        for item in v:
            item = str(item).strip()
            if item and item not in seen:
                seen.append(item)
        return seen

    @validator("lng")
    def coordinates_pair(cls, v, values):
        """lat and lng come as a pair"""
        if (v is None) != (values.get("lat") is None):
            raise ValueError("lat and lng must both be set or both be empty")
        return v

    def to_record(self) -> Dict[str, Any]:
        """Column values for the clinics table"""
        record = self.model_dump(by_alias=True, exclude={"validation_status", "traffic_meta"})
        record["validation_status"] = self.validation_status.model_dump(by_alias=True)
        record["traffic_meta"] = self.traffic_meta.model_dump(by_alias=True, mode="json")
        return record
