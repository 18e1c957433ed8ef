"""Pydantic schemas for stored aggregates and seed files."""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from models.records import parse_stream_id


class UserAggregate(BaseModel):
    """Check-in fields maintained on a user hash."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    user_id: str
    num_checkins: int = Field(default=0, ge=0, alias="numCheckins")
    last_checkin: Optional[int] = Field(
        default=None, alias="lastCheckin", description="Millisecond timestamp."
    )
    last_seen_at: Optional[str] = Field(default=None, alias="lastSeenAt")


class LocationAggregate(BaseModel):
    """Rating fields maintained on a location hash."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    location_id: str
    num_checkins: int = Field(default=0, ge=0, alias="numCheckins")
    num_stars: int = Field(default=0, ge=0, alias="numStars")
    average_stars: Optional[int] = Field(default=None, alias="averageStars")


class CheckinSeed(BaseModel):
    """One entry of a check-in seed file."""

    model_config = ConfigDict(populate_by_name=True)

    id: Optional[str] = None
    location_id: str = Field(..., alias="locationId")
    user_id: str = Field(..., alias="userId")
    star_rating: int = Field(..., alias="starRating")

    @field_validator("id")
    @classmethod
    def check_stream_id(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        if parse_stream_id(value) == (0, 0):
            raise ValueError("Stream ID must be greater than 0-0")
        return value


class CheckinSeedFile(BaseModel):
    checkins: List[CheckinSeed] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_id_order(self) -> "CheckinSeedFile":
        previous = None
        for index, checkin in enumerate(self.checkins):
            if checkin.id is None:
                continue
            current = parse_stream_id(checkin.id)
            if previous is not None and current <= previous:
                raise ValueError(
                    f"Checkin {index} has ID {checkin.id} which does not follow the previous ID"
                )
            previous = current
        return self
