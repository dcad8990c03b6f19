"""
Base schemas shared by request and response DTOs.
"""
from pydantic import BaseModel, ConfigDict


class StandardizedModel(BaseModel):
    """Response base: enums serialize as values, ORM objects are accepted."""

    model_config = ConfigDict(use_enum_values=True, populate_by_name=True, from_attributes=True)


class StrictRequestModel(BaseModel):
    """Request base that forbids unexpected fields."""

    model_config = ConfigDict(extra="forbid", validate_assignment=True)
