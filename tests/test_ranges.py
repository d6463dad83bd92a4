import pytest

from scraper.ranges import resolve_range
from scraper.utils import ConfigurationError


@pytest.mark.parametrize(
    "expr,total,expected",
    [
        ("all", 10, list(range(1, 11))),
        ("ALL", 3, [1, 2, 3]),
        ("", 4, [1, 2, 3, 4]),
        (None, 2, [1, 2]),
        ("3-5", 10, [3, 4, 5]),
        ("8-", 5, [5]),
        ("0,-1,abc", 10, []),
        ("2,2,1-3", 10, [1, 2, 3]),
        ("7-3", 10, []),
        ("1-3, 9 , 12", 10, [1, 2, 3, 9]),
        ("0-2", 10, [1, 2]),
        ("4 - 6", 10, [4, 5, 6]),
    ],
)
def test_resolve_range(expr, total, expected):
    assert resolve_range(expr, total) == expected


def test_zero_total_is_empty_for_any_expression():
    assert resolve_range("1-5", 0) == []
    assert resolve_range("all", 0) == []


def test_open_interval_runs_to_total():
    assert resolve_range("98-", 100) == [98, 99, 100]


def test_output_is_sorted_unique_and_in_bounds():
    out = resolve_range("9,1-3,2,20,5-", 10)
    assert out == sorted(set(out))
    assert all(1 <= i <= 10 for i in out)
    assert out == [1, 2, 3, 5, 6, 7, 8, 9, 10]


def test_strict_mode_rejects_malformed_tokens():
    with pytest.raises(ConfigurationError):
        resolve_range("1-3,abc", 10, strict=True)
    with pytest.raises(ConfigurationError):
        resolve_range("-1", 10, strict=True)
    # out-of-range numbers are still not errors
    assert resolve_range("0,11,3", 10, strict=True) == [3]
