"""
Incident data models for the Incidents service.
"""

from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, Field, TypeAdapter, field_validator


class Incident(BaseModel):
    """An incident record as held by the Record Store.

    The JSON form of this model is both the API response body and the value
    stored in the Cache Layer.
    """
    id: int
    title: str
    reporter: Optional[str] = None
    type: Optional[str] = None
    description: Optional[str] = None
    resource_id: Optional[str] = None
    date: datetime
    updated_at: Optional[datetime] = None

    @field_validator("resource_id", mode="before")
    @classmethod
    def _stringify_resource_id(cls, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value


class IncidentFields(BaseModel):
    """Caller-supplied fields for create and update."""
    title: Optional[str] = Field(None, description="Incident title (required, non-empty)")
    reporter: Optional[str] = Field(None, description="Who reported the incident")
    type: Optional[str] = Field(None, description="Incident type")
    description: Optional[str] = Field(None, description="Free-form description")
    resource_id: Optional[str] = Field(None, description="Reference to the affected resource")

    @field_validator("reporter", "type", "description", "resource_id", mode="before")
    @classmethod
    def _stringify_numbers(cls, value: Any) -> Any:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value


class DeleteResponse(BaseModel):
    """Response model for a successful delete."""
    message: str


INCIDENT_LIST = TypeAdapter(List[Incident])
