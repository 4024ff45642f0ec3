"""
Unit tests for the rating Histogram.
"""

import pytest

from csfd_dist.histogram import ARITY, CATEGORIES, Histogram, validate_counts


class TestHistogram:
    """Test accumulation and schema checks."""

    def test_starts_zeroed(self):
        h = Histogram()
        assert h.counts == [0] * ARITY
        assert h.total == 0

    def test_merge_adds_element_wise(self):
        h = Histogram()
        h.merge([1, 0, 0, 0, 0, 0]).merge([0, 2, 0, 0, 0, 0]).merge(Histogram([0, 0, 0, 0, 0, 3]))
        assert h.counts == [1, 2, 0, 0, 0, 3]
        assert h.total == 6
        assert h.peak == 3

    @pytest.mark.parametrize("bad", [
        [1, 2, 3],
        [0, 0, 0, 0, 0, 0, 0],
        [0, 0, 0, 0, 0, -1],
        [0, 0, 0, 0, 0, 1.5],
        [0, 0, 0, 0, 0, "1"],
        [True, 0, 0, 0, 0, 0],
        "123456",
        None,
    ])
    def test_merge_rejects_schema_violations(self, bad):
        h = Histogram()
        with pytest.raises(ValueError):
            h.merge(bad)
        assert h.counts == [0] * ARITY

    def test_frozen_histogram_rejects_merge(self):
        h = Histogram([1, 1, 1, 1, 1, 1]).freeze()
        assert h.frozen
        with pytest.raises(RuntimeError):
            h.merge([1, 0, 0, 0, 0, 0])

    def test_equality_ignores_frozen_flag(self):
        assert Histogram([1, 2, 3, 4, 5, 6]).freeze() == Histogram([1, 2, 3, 4, 5, 6])

    def test_snapshot_is_a_copy(self):
        h = Histogram()
        snap = h.snapshot()
        h.merge([1, 0, 0, 0, 0, 0])
        assert snap == (0, 0, 0, 0, 0, 0)

    def test_as_dict_follows_category_order(self):
        d = Histogram([6, 5, 4, 3, 2, 1]).as_dict()
        assert list(d) == list(CATEGORIES)
        assert d[".stars.stars-5"] == 6
        assert d[".stars.trash"] == 1

    def test_constructor_validates(self):
        with pytest.raises(ValueError):
            Histogram([1, 2])

    def test_validate_counts_returns_new_list(self):
        src = (1, 2, 3, 4, 5, 6)
        assert validate_counts(src) == [1, 2, 3, 4, 5, 6]
