from datetime import date

import pytest

from analysis.forecast import build_forecast, stable_seed

CHECK_IN = date(2025, 7, 12)


def test_history_backed_forecast_is_statistical():
    forecast = build_forecast("rakuten_1001", CHECK_IN, [100.0, 110.0, 120.0, 130.0, 140.0])

    assert forecast.source == "statistical"
    assert forecast.model_version == "linear-1"
    assert forecast.data_points == 5
    assert [point.predicted_price for point in forecast.points] == [
        140, 150, 160, 170, 180, 190, 200
    ]
    assert forecast.points[0].confidence == pytest.approx(1.0)
    assert forecast.points[0].target_date == CHECK_IN


def test_statistical_forecast_never_goes_negative():
    forecast = build_forecast("rakuten_1001", CHECK_IN, [500.0, 400.0, 300.0, 200.0, 100.0])

    assert forecast.points[-1].predicted_price == 0
    assert all(point.price_range_low >= 0 for point in forecast.points)


def test_short_history_falls_back_to_synthetic():
    forecast = build_forecast("rakuten_1001", CHECK_IN, [100.0, 110.0], room_category="deluxe")

    assert forecast.source == "synthetic"
    assert forecast.model_version == "demo"
    assert forecast.data_points == 2
    assert len(forecast.points) == 7
    assert forecast.points[0].confidence == pytest.approx(0.75)
    assert forecast.points[6].confidence == pytest.approx(0.63)
    for point in forecast.points:
        assert point.price_range_low < point.predicted_price < point.price_range_high


def test_synthetic_forecast_is_deterministic_per_key():
    first = build_forecast("rakuten_1001", CHECK_IN, [], room_category="deluxe", days=3)
    second = build_forecast("rakuten_1001", CHECK_IN, [], room_category="deluxe", days=3)
    other = build_forecast("rakuten_2002", CHECK_IN, [], room_category="deluxe", days=3)

    assert [p.predicted_price for p in first.points] == [p.predicted_price for p in second.points]
    assert [p.predicted_price for p in first.points] != [p.predicted_price for p in other.points]


def test_stable_seed_does_not_depend_on_hash_randomization():
    assert stable_seed("rakuten_1001", "deluxe") == stable_seed("rakuten_1001", "deluxe")
    assert stable_seed("a", "b") != stable_seed("b", "a")
