"""Pydantic models for parking records."""

from datetime import datetime

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, StrictInt

from trackme.models.user import utcnow


class Parking(BaseModel):
    """Parking record document for MongoDB."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: int = Field(
        validation_alias=AliasChoices("_id", "id"), description="Parking ID"
    )
    user_id: int = Field(alias="userId", description="Owner of the record")
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    address: str | None = Field(default=None)
    note: str | None = Field(default=None)
    created_at: datetime = Field(default_factory=utcnow, alias="createdAt")
    updated_at: datetime = Field(default_factory=utcnow, alias="updatedAt")

    @property
    def location(self) -> str:
        """Address when known, otherwise 'lat, lon'."""
        return self.address or f"{self.latitude}, {self.longitude}"


class ParkingCreate(BaseModel):
    """Request body for saving a new parking position."""

    latitude: float = Field(ge=-90, le=90, description="Latitude in degrees")
    longitude: float = Field(ge=-180, le=180, description="Longitude in degrees")
    address: str | None = Field(default=None, max_length=255)
    note: str | None = Field(default=None, max_length=500)


class ParkingUpdate(BaseModel):
    """Request body for editing a parking position. Coordinates are fixed."""

    address: str | None = Field(default=None, max_length=255)
    note: str | None = Field(default=None, max_length=500)


class Pagination(BaseModel):
    total: int
    limit: int
    offset: int
    has_more: bool = Field(serialization_alias="hasMore")


class ParkingHistory(BaseModel):
    parkings: list[Parking]
    pagination: Pagination


class StartTimerRequest(BaseModel):
    """Optional request body for starting a timer over REST."""

    duration: StrictInt | None = Field(
        default=None, description="Whole seconds to count down"
    )
