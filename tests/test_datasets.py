from datetime import date

import pytest

from dealerops.datasets import get_dataset, normalize_key, split_row
from dealerops.errors import MissingBusinessKeyError, UnknownDatasetTypeError
from dealerops.schemas import DatasetType


def test_business_keys_are_fixed_per_dataset_type() -> None:
    assert get_dataset(DatasetType.BILLING).key_field == "ro_number"
    assert get_dataset(DatasetType.WARRANTY).key_field == "claim_number"
    assert get_dataset(DatasetType.BOOKING).key_field == "reg_number"
    assert get_dataset(DatasetType.PARTS_OPERATION).key_field == "op_part_code"
    assert get_dataset("repair_order").key_field == "ro_number"


def test_unknown_dataset_type_is_rejected() -> None:
    with pytest.raises(UnknownDatasetTypeError):
        get_dataset("invoices")


def test_split_row_types_known_fields_and_keeps_extras() -> None:
    config = get_dataset(DatasetType.BILLING)
    row = {
        "ro_number": " RO-1001 ",
        "labour_amount": "1250.50",
        "parts_amount": 300,
        "vehicle_model": "Creta",
        "bay_number": 4,
        "delivered_on": date(2026, 10, 1),
    }

    record = split_row(config, row)

    assert record.key == "RO-1001"
    assert record.fields == {"labour_amount": 1250.5, "parts_amount": 300.0, "vehicle_model": "Creta"}
    assert record.extra == {"bay_number": 4, "delivered_on": "2026-10-01"}


def test_split_row_ignores_reserved_columns() -> None:
    config = get_dataset(DatasetType.BOOKING)

    record = split_row(config, {"reg_number": "MH12AB1234", "org_id": "someone-else", "upload_id": 99})

    assert record.fields == {}
    assert record.extra == {}


def test_split_row_blank_values_become_null() -> None:
    config = get_dataset(DatasetType.BOOKING)

    record = split_row(config, {"reg_number": "MH12AB1234", "estimated_cost": "  ", "vin_number": ""})

    assert record.fields == {"estimated_cost": None, "vin_number": None}


def test_split_row_nan_cells_become_null() -> None:
    config = get_dataset(DatasetType.BOOKING)

    record = split_row(config, {"reg_number": "MH12AB1234", "vin_number": float("nan"), "customer_name": float("nan")})

    assert record.fields == {"vin_number": None, "customer_name": None}


def test_split_row_rejects_non_numeric_amount() -> None:
    config = get_dataset(DatasetType.WARRANTY)

    with pytest.raises(ValueError, match="claim_amount"):
        split_row(config, {"claim_number": "W-1", "claim_amount": "twelve"})


def test_missing_business_key_reports_row_index() -> None:
    config = get_dataset(DatasetType.PARTS_OPERATION)

    with pytest.raises(MissingBusinessKeyError) as excinfo:
        split_row(config, {"op_part_code": "  ", "amount": 10}, row_index=7)

    assert excinfo.value.row_index == 7
    assert excinfo.value.key_field == "op_part_code"


def test_numeric_keys_normalize_like_their_text_form() -> None:
    assert normalize_key(10234.0) == "10234"
    assert normalize_key(10234) == "10234"
    assert normalize_key(" 10234 ") == "10234"
    assert normalize_key(None) == ""


def test_nan_key_counts_as_missing() -> None:
    assert normalize_key(float("nan")) == ""
    config = get_dataset(DatasetType.BILLING)

    with pytest.raises(MissingBusinessKeyError) as excinfo:
        split_row(config, {"ro_number": float("nan"), "labour_amount": 1})

    assert excinfo.value.key_field == "ro_number"
