"""Canonical field-intake payload shared by the field client and the server.

Attributes are snake_case in Python; the wire format (outbox records and
the multipart ``payload`` field) is camelCase, matching what field devices
have always sent.
"""

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from src.db.models import CargoType, ServiceType

QUANTITY_CARGO_TYPES = frozenset({CargoType.barrel.value, CargoType.box.value})
DIMENSION_CARGO_TYPES = frozenset({
    CargoType.crate.value,
    CargoType.pallet.value,
    CargoType.machinery.value,
})
VEHICLE_CARGO_TYPES = frozenset({CargoType.vehicle.value})


class IntakePayload(BaseModel):
    """A normalized cargo collection recorded in the field."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    customer_name: str
    phone: str
    destination: str
    service_type: str = ServiceType.depot.value
    cargo_type: str = CargoType.general.value

    pickup_address: str | None = None
    pickup_contact_phone: str | None = None
    notes: str | None = None

    # barrel / box
    quantity: int | None = None

    # crate / pallet / machinery
    weight_kg: float | None = None
    length_cm: float | None = None
    width_cm: float | None = None
    height_cm: float | None = None
    forklift_required: bool | None = None

    # crate / pallet / machinery / vehicle
    handling_notes: str | None = None

    # vehicle
    vehicle_make: str | None = None
    vehicle_model: str | None = None
    vehicle_year: str | None = None
    vehicle_vin: str | None = None
    vehicle_reg: str | None = None
    keys_received: bool | None = None

    occurred_at_iso: str = Field(alias="occurredAtISO")

    def to_wire(self) -> dict:
        """Serialize to the camelCase JSON object sent to the server."""
        return self.model_dump(by_alias=True, mode="json")
