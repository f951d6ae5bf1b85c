"""Normalization and validation of raw field-intake input.

Raw input is whatever a form or an older outbox record holds: stray
whitespace, empty strings, numbers typed as strings, and field names from
earlier payload versions. ``normalize_intake`` turns it into a canonical
``IntakePayload``; ``validate_intake`` reports what is still missing.

Field-name aliases are resolved in one place, ``FIELD_ALIASES``. Each
canonical (camelCase) name maps to the keys consulted in priority order;
the first one holding a defined value wins. Older devices sent
``vehicleKeysReceived`` and bare ``length``/``width``/``height``/``weight``,
and some integrations post snake_case. The table is permanent: queued
records can sit on a device for weeks, so old names stay readable.

Example:
    payload = normalize_intake({"customerName": " Andre ", "phone": "+447900000000",
                                "destination": "Kingston", "cargoType": "barrel",
                                "quantity": "3"})
    problems = validate_intake(payload)  # []
"""

import math
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from src.db.models import CargoType, ServiceType
from src.errors import CargoPulseError
from src.services.intake_payload import (
    DIMENSION_CARGO_TYPES,
    QUANTITY_CARGO_TYPES,
    VEHICLE_CARGO_TYPES,
    IntakePayload,
)

MIN_CUSTOMER_NAME_LENGTH = 2
MIN_PHONE_LENGTH = 6
MIN_DESTINATION_LENGTH = 2

FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "customerName": ("customerName", "customer_name"),
    "phone": ("phone",),
    "destination": ("destination",),
    "serviceType": ("serviceType", "service_type"),
    "cargoType": ("cargoType", "cargo_type"),
    "pickupAddress": ("pickupAddress", "pickup_address"),
    "pickupContactPhone": ("pickupContactPhone", "pickup_contact_phone"),
    "notes": ("notes",),
    "quantity": ("quantity",),
    "weightKg": ("weightKg", "weight_kg", "weight"),
    "lengthCm": ("lengthCm", "length_cm", "length"),
    "widthCm": ("widthCm", "width_cm", "width"),
    "heightCm": ("heightCm", "height_cm", "height"),
    "forkliftRequired": ("forkliftRequired", "forklift_required"),
    "handlingNotes": ("handlingNotes", "handling_notes"),
    "vehicleMake": ("vehicleMake", "vehicle_make"),
    "vehicleModel": ("vehicleModel", "vehicle_model"),
    "vehicleYear": ("vehicleYear", "vehicle_year"),
    "vehicleVin": ("vehicleVin", "vehicle_vin"),
    "vehicleReg": ("vehicleReg", "vehicle_reg"),
    "keysReceived": ("keysReceived", "vehicleKeysReceived", "keys_received"),
    "occurredAtISO": ("occurredAtISO", "occurredAtIso", "occurred_at"),
}

_TRUE_STRINGS = frozenset({"true", "yes", "y", "1", "on"})
_FALSE_STRINGS = frozenset({"false", "no", "n", "0", "off"})


def _is_defined(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str) and not value.strip():
        return False
    return True


def resolve_field(raw: Mapping[str, Any], field: str) -> Any:
    """Return the first defined value across the aliases of ``field``."""
    for key in FIELD_ALIASES.get(field, (field,)):
        if key in raw and _is_defined(raw[key]):
            return raw[key]
    return None


def _clean_str(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _opt_str(value: Any) -> str | None:
    cleaned = _clean_str(value)
    return cleaned or None


def _opt_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(str(value).strip()) if isinstance(value, str) else float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _opt_int(value: Any) -> int | None:
    number = _opt_float(value)
    if number is None or not number.is_integer():
        return None
    return int(number)


def _opt_bool(value: Any) -> bool | None:
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    text = str(value).strip().lower()
    if text in _TRUE_STRINGS:
        return True
    if text in _FALSE_STRINGS:
        return False
    return None


def _choice(value: Any, allowed: type, fallback: str, missing: str) -> str:
    cleaned = _clean_str(value)
    if not cleaned:
        return missing
    valid = {member.value for member in allowed}
    return cleaned if cleaned in valid else fallback


def utc_now_iso_z() -> str:
    """Current UTC time in the millisecond ISO-8601 form field devices use."""
    return datetime.now(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def normalize_intake(raw: Mapping[str, Any]) -> IntakePayload:
    """Produce a canonical IntakePayload from raw form or wire input.

    Strings are trimmed and empty optional strings become None. Numeric
    fields parse to None when unparsable or non-finite. Cargo-conditional
    fields are kept only for the cargo types they belong to. A missing
    ``occurredAtISO`` defaults to now.

    Args:
        raw: Form state or a previously serialized payload.

    Returns:
        Normalized payload. It may still fail ``validate_intake``.
    """
    def get(field: str) -> Any:
        return resolve_field(raw, field)

    cargo_type = _choice(
        get("cargoType"), CargoType, CargoType.other.value, CargoType.general.value
    )
    service_type = _choice(
        get("serviceType"), ServiceType, ServiceType.depot.value, ServiceType.depot.value
    )

    values: dict[str, Any] = {
        "customer_name": _clean_str(get("customerName")),
        "phone": _clean_str(get("phone")),
        "destination": _clean_str(get("destination")),
        "service_type": service_type,
        "cargo_type": cargo_type,
        "pickup_address": _opt_str(get("pickupAddress")),
        "pickup_contact_phone": _opt_str(get("pickupContactPhone")),
        "notes": _opt_str(get("notes")),
        "occurred_at_iso": _clean_str(get("occurredAtISO")) or utc_now_iso_z(),
    }

    if cargo_type in QUANTITY_CARGO_TYPES:
        values["quantity"] = _opt_int(get("quantity"))

    if cargo_type in DIMENSION_CARGO_TYPES:
        values.update(
            weight_kg=_opt_float(get("weightKg")),
            length_cm=_opt_float(get("lengthCm")),
            width_cm=_opt_float(get("widthCm")),
            height_cm=_opt_float(get("heightCm")),
            forklift_required=_opt_bool(get("forkliftRequired")),
            handling_notes=_opt_str(get("handlingNotes")),
        )

    if cargo_type in VEHICLE_CARGO_TYPES:
        values.update(
            vehicle_make=_opt_str(get("vehicleMake")),
            vehicle_model=_opt_str(get("vehicleModel")),
            vehicle_year=_opt_str(get("vehicleYear")),
            vehicle_vin=_opt_str(get("vehicleVin")),
            vehicle_reg=_opt_str(get("vehicleReg")),
            keys_received=_opt_bool(get("keysReceived")),
            handling_notes=_opt_str(get("handlingNotes")),
        )

    return IntakePayload(**values)


def validate_intake(payload: IntakePayload) -> list[str]:
    """Return itemized problems with a normalized payload (empty when valid)."""
    problems: list[str] = []
    if len(payload.customer_name) < MIN_CUSTOMER_NAME_LENGTH:
        problems.append(
            f"customerName must be at least {MIN_CUSTOMER_NAME_LENGTH} characters"
        )
    if len(payload.phone) < MIN_PHONE_LENGTH:
        problems.append(f"phone must be at least {MIN_PHONE_LENGTH} characters")
    if len(payload.destination) < MIN_DESTINATION_LENGTH:
        problems.append(
            f"destination must be at least {MIN_DESTINATION_LENGTH} characters"
        )
    try:
        datetime.fromisoformat(payload.occurred_at_iso.replace("Z", "+00:00"))
    except ValueError:
        problems.append("occurredAtISO must be an ISO-8601 timestamp")
    return problems


def require_valid_intake(payload: IntakePayload) -> IntakePayload:
    """Return the payload unchanged or raise E-2001 listing every problem."""
    problems = validate_intake(payload)
    if problems:
        raise CargoPulseError.from_code(
            "E-2001",
            reasons="; ".join(problems),
            details={"fields": problems},
        )
    return payload


def build_cargo_meta(payload: IntakePayload) -> dict[str, Any]:
    """Shape the shipment cargo_meta record for the payload's cargo type."""
    meta: dict[str, Any] = {
        "pickup_address": payload.pickup_address,
        "pickup_contact_phone": payload.pickup_contact_phone,
        "notes": payload.notes,
    }
    if payload.cargo_type in QUANTITY_CARGO_TYPES:
        meta["quantity"] = payload.quantity
    elif payload.cargo_type in DIMENSION_CARGO_TYPES:
        meta["dimensions"] = {
            "weight_kg": payload.weight_kg,
            "length_cm": payload.length_cm,
            "width_cm": payload.width_cm,
            "height_cm": payload.height_cm,
        }
        meta["forklift_required"] = payload.forklift_required
        meta["handling_notes"] = payload.handling_notes
    elif payload.cargo_type in VEHICLE_CARGO_TYPES:
        meta["vehicle"] = {
            "make": payload.vehicle_make,
            "model": payload.vehicle_model,
            "year": payload.vehicle_year,
            "vin": payload.vehicle_vin,
            "reg": payload.vehicle_reg,
            "keys_received": payload.keys_received,
        }
        meta["handling_notes"] = payload.handling_notes
    return meta
