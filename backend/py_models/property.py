from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

UNKNOWN_ADDRESS = "Unknown"


class ListingSource(str, Enum):
    ZILLOW = "zillow"
    REDFIN = "redfin"


class PropertyType(str, Enum):
    SINGLE_FAMILY = "single-family"
    CONDO = "condo"
    TOWNHOUSE = "townhouse"
    MULTI_FAMILY = "multi-family"
    OTHER = "other"


class PartialProperty(BaseModel):
    """Whatever a single locator managed to recover; every field may be missing."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    address: Optional[str] = None
    list_price: Optional[int] = None
    days_on_market: Optional[int] = None
    bedrooms: Optional[float] = None
    bathrooms: Optional[float] = None
    property_type: Optional[PropertyType] = None
    square_feet: Optional[int] = None
    year_built: Optional[int] = None
    price_reduced: Optional[bool] = None
    original_price: Optional[int] = None
    estimated_value: Optional[int] = None


class PropertyRecord(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, use_enum_values=True
    )

    address: str = UNKNOWN_ADDRESS
    list_price: int = Field(0, ge=0, description="Numeric USD price, 0 when unknown")
    days_on_market: int = Field(0, ge=0)
    bedrooms: float = Field(0, ge=0)
    bathrooms: float = Field(0, ge=0)
    property_type: PropertyType = PropertyType.OTHER
    square_feet: Optional[int] = Field(None, gt=0)
    year_built: Optional[int] = Field(None, gt=0)
    price_reduced: bool = False
    original_price: Optional[int] = Field(None, gt=0)
    estimated_value: Optional[int] = Field(
        None, gt=0, description="The source site's own valuation"
    )
    source: ListingSource
    source_url: str
    scraped_at: datetime

    @property
    def needs_manual_completion(self) -> bool:
        # degraded records carry an address but no numbers
        return self.list_price == 0

    def to_dict(self) -> dict:
        return {"success": True, "data": self.model_dump(mode="json", by_alias=True)}
