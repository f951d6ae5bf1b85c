"""Pydantic schemas for API request/response validation.

This module defines the data contracts for the CargoPulse REST API
shipment endpoints. The field intake endpoint speaks the camelCase wire
format of IntakePayload and is not modelled here.
"""

import json

from pydantic import BaseModel, ConfigDict, Field, field_validator


# Shipment schemas


class CustomerSummary(BaseModel):
    """Customer fields embedded in a shipment response."""

    id: str
    name: str
    phone: str

    model_config = ConfigDict(from_attributes=True)


class ShipmentEventResponse(BaseModel):
    """Response schema for a timeline event."""

    id: str
    status: str
    note: str | None = None
    occurred_at: str
    created_by: str | None = None

    model_config = ConfigDict(from_attributes=True)


class ShipmentAssetResponse(BaseModel):
    """Response schema for a stored asset with a time-limited URL."""

    id: str
    kind: str
    path: str
    created_at: str
    url: str | None = None

    model_config = ConfigDict(from_attributes=True)


class ProofOfDeliveryResponse(BaseModel):
    """Response schema for captured proof of delivery."""

    receiver_name: str
    photo_path: str
    delivered_at: str
    photo_url: str | None = None

    model_config = ConfigDict(from_attributes=True)


class ShipmentDetailResponse(BaseModel):
    """Response schema for a shipment with its timeline and assets."""

    id: str
    tracking_code: str
    destination: str
    service_type: str
    cargo_type: str
    cargo_meta: dict | None = None
    current_status: str
    last_event_at: str | None = None
    created_at: str
    customer: CustomerSummary | None = None
    events: list[ShipmentEventResponse] = Field(default_factory=list)
    assets: list[ShipmentAssetResponse] = Field(default_factory=list)
    pod: ProofOfDeliveryResponse | None = None

    model_config = ConfigDict(from_attributes=True)

    @field_validator("cargo_meta", mode="before")
    @classmethod
    def _parse_cargo_meta(cls, v: str | dict | None) -> dict | None:
        """Parse cargo_meta from JSON string as stored in the database."""
        if v is None:
            return None
        if isinstance(v, str):
            return json.loads(v)
        return v


class StatusEventCreate(BaseModel):
    """Request schema for appending a status event."""

    status: str = Field(..., min_length=1, max_length=30)
    note: str | None = Field(None, max_length=1000)
    notify: bool = True


class StatusEventResponse(BaseModel):
    """Response schema after a status change."""

    ok: bool = True
    shipment_id: str
    current_status: str
    event: ShipmentEventResponse
    message_log_id: str | None = None


class ProofOfDeliveryCreateResponse(BaseModel):
    """Response schema after POD capture."""

    ok: bool = True
    shipment_id: str
    path: str
    message_log_id: str | None = None
