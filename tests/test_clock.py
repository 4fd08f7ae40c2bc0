from datetime import datetime

from token_queue.clock import current_date_key, days_remaining_in_period, is_distribution_period


def test_date_key_format():
    assert current_date_key(datetime(2024, 6, 5, 23, 59)) == "2024-06-05"


def test_distribution_period_bounds():
    assert is_distribution_period(datetime(2024, 6, 1))
    assert is_distribution_period(datetime(2024, 6, 15, 23, 59))
    assert not is_distribution_period(datetime(2024, 6, 16))
    assert not is_distribution_period(datetime(2024, 2, 29))


def test_days_remaining_in_period():
    assert days_remaining_in_period(datetime(2024, 6, 1)) == 14
    assert days_remaining_in_period(datetime(2024, 6, 15)) == 0
    assert days_remaining_in_period(datetime(2024, 6, 20)) == 0


def test_defaults_to_wall_clock():
    assert current_date_key() == datetime.now().strftime("%Y-%m-%d")
