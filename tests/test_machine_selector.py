"""
Tests for parsing the dashboard's machine serial input.
"""

import pytest

from ui.time_window_selector import parse_serials


def test_comma_and_space_separated():
    assert parse_serials("67408, 67409 67410") == [67408, 67409, 67410]


def test_duplicates_removed_in_order():
    assert parse_serials("2,1,2") == [2, 1]


def test_empty_input():
    assert parse_serials("  ") == []


@pytest.mark.parametrize("value", ["abc", "67408,-1", "1.5"])
def test_invalid_serials(value):
    with pytest.raises(ValueError):
        parse_serials(value)
