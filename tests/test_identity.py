import pytest

from rentwatcher.errors import UnidentifiableRecord
from rentwatcher.identity import (
    COMPOSITE,
    TITLE,
    URL,
    can_generate_reliable_id,
    entity_id,
    entity_id_set,
    listing_number,
)
from rentwatcher.models import Rental


def test_listing_number_from_link():
    assert listing_number("https://rent.591.com.tw/19180936") == "19180936"
    assert listing_number("https://rent.591.com.tw/home/19180936?a=1") == "19180936"
    assert listing_number("https://rent.591.com.tw/detail") is None
    assert listing_number(None) is None


def test_link_based_identity_wins():
    rental = Rental(title="Cozy flat", link="https://rent.591.com.tw/19180936",
                    metro_value="300公尺")
    identity = entity_id(rental)
    assert identity.kind == URL
    assert identity.value == "19180936"
    assert identity.reliability == 100
    assert identity.is_url_based


def test_fallbacks_to_composite_then_title():
    composite = entity_id(Rental(title="Cozy  flat", metro_value="300公尺"))
    assert composite.kind == COMPOSITE
    assert composite.value == "Cozy-flat-300公尺"
    assert composite.is_reliable

    title_only = entity_id(Rental(title="Cozy flat"))
    assert title_only.kind == TITLE
    assert title_only.reliability == 50
    assert not title_only.is_reliable
    assert not can_generate_reliable_id(Rental(title="Cozy flat"))


def test_rental_without_link_or_title_is_rejected():
    with pytest.raises(UnidentifiableRecord):
        entity_id(Rental(title="  ", metro_value="300公尺"))


def test_identity_ignores_station_annotations():
    rental = Rental(title="Cozy flat", link="https://rent.591.com.tw/19180936",
                    metro_title="台北車站", metro_value="300公尺")
    before = entity_id(rental)
    rental.add_station_distance("4232", "台北車站", "300公尺")
    rental.add_station_distance("4233", "善導寺", "700公尺")
    rental.metro_value = "900公尺"
    assert entity_id(rental) == before


def test_entity_id_set_skips_unreliable_ids():
    rentals = [
        Rental(title="A", link="https://rent.591.com.tw/1"),
        Rental(title="B", metro_value="5分鐘"),
        Rental(title="C"),
    ]
    assert entity_id_set(rentals) == {"1", "B-5分鐘"}
