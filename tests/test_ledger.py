import pytest

from chorepoints.exceptions import ValidationError
from chorepoints.ledger import can_afford, credit, debit, progress, require_points, to_points


def test_affordability_boundaries() -> None:
    assert can_afford(10, 10)
    assert can_afford(11, 10)
    assert not can_afford(9, 10)
    assert can_afford(0, 0)


def test_debit_and_credit_are_exact() -> None:
    assert debit(25, 10) == 15
    assert debit(10, 10) == 0
    assert credit(0, 7) == 7
    assert credit(15, 0) == 15


def test_points_coercion() -> None:
    assert to_points(5) == 5
    assert to_points("12") == 12
    assert to_points(" 3 ") == 3
    assert to_points(4.0) == 4

    for bad in (True, 2.5, "ten", None):
        with pytest.raises(ValidationError):
            to_points(bad)  # type: ignore[arg-type]


def test_require_points_rules() -> None:
    assert require_points(0, allow_zero=True) == 0
    assert require_points(1) == 1
    with pytest.raises(ValidationError):
        require_points(0)
    with pytest.raises(ValidationError):
        require_points(-1, allow_zero=True)


def test_progress_is_capped() -> None:
    assert progress(5, 10) == 0.5
    assert progress(30, 10) == 1.0
    assert progress(0, 10) == 0.0
    assert progress(10, 0) == 0.0
