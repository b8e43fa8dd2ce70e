import pytest

from rentwatcher.distance import (
    KILOMETERS,
    MINUTES,
    Distance,
    extract_distance_meters,
)


@pytest.mark.parametrize(
    "text, meters",
    [
        ("500公尺", 500),
        ("距捷運 350 公尺", 350),
        ("1200m", 1200),
        ("1.2公里", 1200),
        ("8分鐘", 640),
        ("5 min", 400),
        ("步行", None),
        ("", None),
        (None, None),
    ],
)
def test_extract_distance_meters(text, meters):
    assert extract_distance_meters(text) == meters


def test_units_are_recorded():
    assert Distance.from_metro_value("3分鐘").unit == MINUTES
    assert Distance.from_metro_value("2km").unit == KILOMETERS


def test_negative_or_missing_values_are_unknown():
    assert Distance(-5).to_meters() is None
    assert Distance(None).to_meters() is None
    assert str(Distance(None)) == "Unknown"


def test_exceeds_threshold_treats_missing_threshold_as_near():
    far = Distance.from_meters(1200)
    assert far.exceeds_threshold(800)
    assert not far.exceeds_threshold(None)
    assert not far.exceeds_threshold(0)
    assert not Distance.from_meters(800).exceeds_threshold(800)


def test_compare_and_minimum_sort_unknown_last():
    near = Distance.from_meters(300)
    walk = Distance(5, MINUTES)
    unknown = Distance(None)
    assert near.compare_to(walk) == -1
    assert walk.compare_to(near) == 1
    assert unknown.compare_to(near) == 1
    assert Distance.minimum([walk, unknown, near]) == near
    assert Distance.minimum([unknown]) is None


def test_string_and_dict_forms():
    assert str(Distance.from_meters(640)) == "640m"
    assert str(Distance(1.2, KILOMETERS)) == "1.2km"
    data = Distance(8, MINUTES).to_dict()
    assert data == {"value": 8, "unit": MINUTES, "meters": 640}
    assert Distance.from_dict(data) == Distance(8, MINUTES)
