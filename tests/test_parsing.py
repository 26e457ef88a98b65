from datetime import datetime, timezone

import pytest

from backend.listings.parsing import (
    assemble_address,
    complete_record,
    degraded_record,
    extract_number,
    has_required_data,
    infer_original_price,
    infer_price_reduced,
    normalize_property_type,
    parse_price,
    positive_int,
)
from backend.py_models.property import ListingSource, PartialProperty, PropertyType


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("$1,250,000", 1250000),
        ("1250000", 1250000),
        (1250000, 1250000),
        (499999.99, 499999),
        ("$515,000.00", 515000),
        ({"value": "$300,000"}, 300000),
        ("", 0),
        (None, 0),
        ("call for price", 0),
        (True, 0),
        (float("inf"), 0),
        (float("nan"), 0),
        ("9" * 400, 0),
    ],
)
def test_parse_price(raw, expected):
    assert parse_price(raw) == expected


def test_parse_price_idempotent():
    assert parse_price(parse_price("$1,250,000")) == 1250000


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("2.5 baths", 2.5),
        ("1,850 sqft", 1850.0),
        (3, 3.0),
        ("17 days", 17.0),
        ({"value": 1320}, 1320.0),
        ("", 0.0),
        (None, 0.0),
        ("n/a", 0.0),
        (float("inf"), 0.0),
        ("1e999", 1.0),
        ("9" * 400 + " sqft", 0.0),
        (10 ** 400, 0.0),
    ],
)
def test_extract_number(raw, expected):
    assert extract_number(raw) == expected


def test_positive_int_zero_is_absent():
    assert positive_int("0") is None
    assert positive_int(None) is None
    assert positive_int("1,998") == 1998
    assert positive_int(float("inf")) is None
    assert positive_int("9" * 400) is None


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("SINGLE_FAMILY", PropertyType.SINGLE_FAMILY),
        ("Single Family Residence", PropertyType.SINGLE_FAMILY),
        ("House", PropertyType.SINGLE_FAMILY),
        ("CONDO", PropertyType.CONDO),
        ("Apartment", PropertyType.CONDO),
        ("TOWNHOUSE", PropertyType.TOWNHOUSE),
        ("Row House", PropertyType.TOWNHOUSE),
        ("MULTI_FAMILY", PropertyType.MULTI_FAMILY),
        ("Duplex", PropertyType.MULTI_FAMILY),
        ("LOT", PropertyType.OTHER),
        ("", PropertyType.OTHER),
        (None, PropertyType.OTHER),
        (["Apartment", "Place"], PropertyType.CONDO),
    ],
)
def test_normalize_property_type(raw, expected):
    assert normalize_property_type(raw) is expected


def test_condo_beats_townhouse():
    assert normalize_property_type("Condo / Townhouse") is PropertyType.CONDO
    assert normalize_property_type("townhouse condo") is PropertyType.CONDO


def test_assemble_address_skips_missing_parts():
    assert assemble_address({"streetAddress": "1 Elm St", "addressLocality": "Boston"}) == "1 Elm St, Boston"
    assert (
        assemble_address({"streetAddress": "9 Birch Ln", "city": "Salem", "state": "OR", "zipcode": "97301"})
        == "9 Birch Ln, Salem, OR, 97301"
    )


def test_assemble_address_fallbacks():
    assert assemble_address({"fullAddress": "5 Oak Ct, Troy, NY"}) == "5 Oak Ct, Troy, NY"
    assert assemble_address({}) == "Unknown"
    assert assemble_address({}, default=None) is None
    assert assemble_address("  2 Pine Rd  ") == "2 Pine Rd"
    assert assemble_address({"streetAddress": {"assembledAddress": "77 Lake Shore Dr"}}) == "77 Lake Shore Dr"


def test_infer_price_reduced():
    assert infer_price_reduced([{"price": 1}, {"price": 2}]) is True
    assert infer_price_reduced([{"price": 1}]) is False
    assert infer_price_reduced(None, {"originalPrice": 900000}) is True
    assert infer_price_reduced(text="Price cut: $5,000 (5/1)") is True
    assert infer_price_reduced(text="Well priced colonial") is False


def test_infer_original_price_oldest_listing():
    history = [
        {"date": "2024-05-20", "event": "Price change", "price": 689000},
        {"date": "2024-04-02", "event": "Listed for sale", "price": 725000},
        {"date": "2021-01-10", "event": "Listed for sale", "price": 540000},
    ]
    # oldest listing was below today's price, so there is nothing to report
    assert infer_original_price(history, 689000) is None
    assert infer_original_price(history[:2], 689000) == 725000


def test_infer_original_price_bad_input():
    assert infer_original_price(None) is None
    assert infer_original_price(["junk", 3]) is None


def test_required_data_gate():
    assert not has_required_data(None)
    assert not has_required_data(PartialProperty())
    assert not has_required_data(PartialProperty(address="Unknown", list_price=0, bedrooms=3))
    assert has_required_data(PartialProperty(address="1 Elm St"))
    assert has_required_data(PartialProperty(list_price=250000))


def test_complete_record_defaults():
    at = datetime(2024, 6, 1, tzinfo=timezone.utc)
    record = complete_record(
        PartialProperty(address="1 Elm St, Boston", list_price=500000),
        ListingSource.ZILLOW,
        "https://www.zillow.com/homedetails/1_zpid/",
        scraped_at=at,
    )
    assert record.days_on_market == 0
    assert record.bedrooms == 0
    assert record.property_type == "other"
    assert record.square_feet is None
    assert record.price_reduced is False
    assert record.scraped_at == at

    envelope = record.to_dict()
    assert envelope["success"] is True
    assert envelope["data"]["listPrice"] == 500000
    assert envelope["data"]["source"] == "zillow"
    assert envelope["data"]["sourceUrl"].endswith("1_zpid/")


def test_degraded_record_is_all_zero():
    record = degraded_record("123 Main St Cambridge Ma", ListingSource.ZILLOW, "https://www.zillow.com/x")
    assert record.address == "123 Main St Cambridge Ma"
    assert record.list_price == 0
    assert record.bedrooms == 0 and record.bathrooms == 0
    assert record.needs_manual_completion
