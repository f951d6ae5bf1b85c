"""Tests for intake normalization, validation and cargo meta shaping."""

import math

import pytest

from src.errors import CargoPulseError
from src.services.intake_normalizer import (
    build_cargo_meta,
    normalize_intake,
    require_valid_intake,
    resolve_field,
    validate_intake,
)
from tests.helpers.fakes import intake_form


class TestNormalizeStrings:
    """Trimming and empty-string handling."""

    def test_trims_required_strings(self):
        payload = normalize_intake(
            intake_form(customerName="  Andre  ", destination=" Kingston ")
        )
        assert payload.customer_name == "Andre"
        assert payload.destination == "Kingston"

    def test_empty_optionals_become_none(self):
        payload = normalize_intake(intake_form(notes="   ", pickupAddress=""))
        assert payload.notes is None
        assert payload.pickup_address is None

    def test_occurred_at_defaults_to_now(self):
        form = intake_form()
        del form["occurredAtISO"]
        payload = normalize_intake(form)
        assert payload.occurred_at_iso.endswith("Z")
        assert validate_intake(payload) == []


class TestNormalizeCargo:
    """Cargo-type conditional fields."""

    def test_quantity_kept_for_barrels(self):
        payload = normalize_intake(intake_form(cargoType="barrel", quantity="4"))
        assert payload.quantity == 4

    def test_quantity_dropped_for_other_types(self):
        payload = normalize_intake(intake_form(cargoType="pallet", quantity=4))
        assert payload.quantity is None

    def test_fractional_quantity_is_none(self):
        payload = normalize_intake(intake_form(cargoType="box", quantity="2.5"))
        assert payload.quantity is None

    @pytest.mark.parametrize("value", ["abc", "nan", "inf", float("inf"), True])
    def test_unparsable_numbers_become_none(self, value):
        payload = normalize_intake(intake_form(cargoType="crate", weightKg=value))
        assert payload.weight_kg is None

    def test_dimension_aliases(self):
        payload = normalize_intake(
            intake_form(cargoType="machinery", length="120", width_cm=80, heightCm=" 95.5 ",
                        weight="300")
        )
        assert payload.length_cm == 120.0
        assert payload.width_cm == 80.0
        assert payload.height_cm == 95.5
        assert payload.weight_kg == 300.0
        assert not any(math.isnan(v) for v in (payload.length_cm, payload.width_cm))

    def test_canonical_name_wins_over_alias(self):
        form = intake_form(cargoType="crate", lengthCm="100", length="50")
        assert normalize_intake(form).length_cm == 100.0

    def test_empty_canonical_falls_through_to_alias(self):
        form = intake_form(cargoType="crate", lengthCm="", length="50")
        assert normalize_intake(form).length_cm == 50.0

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [("yes", True), ("on", True), ("1", True), ("No", False), ("0", False),
         (True, True), ("maybe", None)],
    )
    def test_boolean_coercion(self, raw, expected):
        payload = normalize_intake(intake_form(cargoType="vehicle", keysReceived=raw))
        assert payload.keys_received is expected

    def test_legacy_keys_received_name(self):
        payload = normalize_intake(
            intake_form(cargoType="vehicle", vehicleKeysReceived="true")
        )
        assert payload.keys_received is True

    def test_vehicle_fields_dropped_for_barrels(self):
        payload = normalize_intake(intake_form(cargoType="barrel", vehicleMake="Honda"))
        assert payload.vehicle_make is None

    def test_unknown_cargo_type_becomes_other(self):
        assert normalize_intake(intake_form(cargoType="piano")).cargo_type == "other"

    def test_missing_cargo_type_defaults_to_general(self):
        form = intake_form()
        del form["cargoType"]
        assert normalize_intake(form).cargo_type == "general"

    def test_unknown_service_type_defaults_to_depot(self):
        assert normalize_intake(intake_form(serviceType="drone")).service_type == "depot"


class TestWireFormat:
    """camelCase wire serialization."""

    def test_to_wire_uses_camel_case(self):
        wire = normalize_intake(intake_form()).to_wire()
        assert wire["customerName"] == "Andre Brown"
        assert wire["occurredAtISO"] == "2026-03-02T09:15:00.000Z"
        assert wire["serviceType"] == "door_to_door"

    def test_wire_output_normalizes_to_itself(self):
        payload = normalize_intake(intake_form(cargoType="vehicle", vehicle_vin=" JT123 "))
        assert normalize_intake(payload.to_wire()) == payload


class TestValidation:
    """Itemized validation problems."""

    def test_valid_payload_has_no_problems(self):
        assert validate_intake(normalize_intake(intake_form())) == []

    def test_bad_timestamp_reported(self):
        problems = validate_intake(normalize_intake(intake_form(occurredAtISO="yesterday")))
        assert problems == ["occurredAtISO must be an ISO-8601 timestamp"]

    def test_require_valid_raises_with_fields(self):
        with pytest.raises(CargoPulseError) as exc_info:
            require_valid_intake(normalize_intake(intake_form(phone="123")))
        error = exc_info.value
        assert error.code == "E-2001"
        assert error.details["fields"] == ["phone must be at least 6 characters"]
        assert "phone must be at least 6 characters" in error.message


class TestCargoMeta:
    """Shipment cargo_meta shaping."""

    def test_barrel_meta(self):
        meta = build_cargo_meta(normalize_intake(intake_form()))
        assert meta["quantity"] == 3
        assert meta["notes"] == "Blue barrels by the gate"
        assert "dimensions" not in meta

    def test_pallet_meta(self):
        meta = build_cargo_meta(
            normalize_intake(intake_form(cargoType="pallet", weightKg=500, forkliftRequired="yes"))
        )
        assert meta["dimensions"]["weight_kg"] == 500.0
        assert meta["forklift_required"] is True

    def test_general_meta_has_only_common_fields(self):
        meta = build_cargo_meta(normalize_intake(intake_form(cargoType="general")))
        assert set(meta) == {"pickup_address", "pickup_contact_phone", "notes"}


def test_resolve_field_skips_blank_values():
    assert resolve_field({"weightKg": " ", "weight_kg": None, "weight": 7}, "weightKg") == 7
    assert resolve_field({}, "weightKg") is None
