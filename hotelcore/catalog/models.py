from datetime import datetime
from enum import Enum
from typing import Optional

from sqlmodel import SQLModel, Field

from hotelcore.database import utcnow


class ResourceCategory(str, Enum):
    ROOM = "room"
    BANQUET = "banquet"
    RESTAURANT = "restaurant"


class ResourceStatus(str, Enum):
    AVAILABLE = "available"
    OCCUPIED = "occupied"
    MAINTENANCE = "maintenance"
    RESERVED = "reserved"


class ResourceInstance(SQLModel, table=True):
    """A concrete bookable unit: one room, one banquet hall or one restaurant table."""

    id: Optional[int] = Field(default=None, primary_key=True)
    category: ResourceCategory = Field(index=True)
    label: str = Field(index=True)  # room number, hall name or table number
    group: Optional[str] = Field(default=None, index=True)  # room type name
    price_minor: int = Field(ge=0)  # per night (rooms), per event (halls); tables use the per-guest fee
    capacity: int = Field(ge=1)
    status: ResourceStatus = ResourceStatus.AVAILABLE
    is_active: bool = True
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def bookable(self) -> bool:
        return self.is_active and self.status != ResourceStatus.MAINTENANCE
