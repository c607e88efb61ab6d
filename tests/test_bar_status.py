import pytest

from barmux import bar_status, BAR_WIDTH


def test_bar_status_half():
    assert bar_status(5, 10, width=10) == '[#####     ] 50%'


def test_bar_status_empty_and_full():
    assert bar_status(0, 3) == '[' + ' ' * BAR_WIDTH + '] 00%'
    assert bar_status(3, 3) == '[' + '#' * BAR_WIDTH + '] 100%'


def test_bar_status_uses_floor_division():
    for total in (1, 3, 7, 40, 99, 250):
        for current in range(total + 1):
            rendered = bar_status(current, total)
            gauge, percentage = rendered.rsplit(' ', 1)

            assert len(gauge) == BAR_WIDTH + 2
            assert gauge.count('#') == current * BAR_WIDTH // total
            assert percentage == '{:02d}%'.format(current * 100 // total)


def test_bar_status_pads_percentage_to_two_digits():
    assert bar_status(1, 20).endswith(' 05%')


def test_bar_status_rejects_non_positive_total():
    with pytest.raises(ValueError):
        bar_status(0, 0)
    with pytest.raises(ValueError):
        bar_status(1, -5)


def test_bar_status_clamps_overshoot_cells():
    rendered = bar_status(15, 10, width=10)
    assert rendered == '[##########] 150%'
