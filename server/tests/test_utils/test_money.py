# 金额分摊与换算测试

import pytest

from utils.money import allocate, allocate_capped, cents_to_amount, format_amount, to_cents


class TestAllocate:
    """按权重分摊整数金额"""

    def test_allocate_proportional(self):
        assert allocate(100, [2, 1, 1]) == [50, 25, 25]

    def test_allocate_sum_is_exact(self):
        """各种权重组合下分摊之和都等于总额"""
        cases = [
            (50000, [198000, 45000]),
            (27000, [220000, 50000]),
            (1, [1, 1, 1]),
            (99, [3, 7, 11, 13]),
            (10007, [1, 0, 5]),
        ]
        for total, weights in cases:
            shares = allocate(total, weights)
            assert sum(shares) == total
            assert len(shares) == len(weights)
            assert all(share >= 0 for share in shares)

    def test_allocate_remainder_goes_to_last_bucket(self):
        assert allocate(10, [1, 1, 1]) == [3, 3, 4]

    def test_allocate_zero_weights_split_evenly(self):
        """全部权重为0时平均分配"""
        assert allocate(10, [0, 0, 0]) == [3, 3, 4]
        assert allocate(100, [0, 0, 0, 0]) == [25, 25, 25, 25]

    def test_allocate_negative_weights_treated_as_zero(self):
        assert allocate(100, [-5, 1]) == [0, 100]

    def test_allocate_zero_total(self):
        assert allocate(0, [3, 4]) == [0, 0]

    def test_allocate_empty_weights(self):
        assert allocate(0, []) == []
        with pytest.raises(ValueError):
            allocate(100, [])

    def test_allocate_rejects_negative_total(self):
        with pytest.raises(ValueError):
            allocate(-1, [1, 1])

    def test_allocate_rejects_non_integer_total(self):
        with pytest.raises(ValueError):
            allocate(10.5, [1, 1])


class TestAllocateCapped:
    """带上限的分摊"""

    def test_overflow_moves_to_buckets_with_room(self):
        # 最后一个桶上限为0，余数转给剩余空间最大的桶
        assert allocate_capped(665, [333, 333, 0], [333, 333, 0]) == [333, 332, 0]

    def test_within_caps_matches_allocate(self):
        assert allocate_capped(27000, [220000, 50000], [220000, 50000]) == allocate(27000, [220000, 50000])

    def test_shares_respect_caps(self):
        caps = [5, 1, 0, 7]
        shares = allocate_capped(13, [1, 1, 1, 1], caps)
        assert sum(shares) == 13
        assert all(0 <= share <= cap for share, cap in zip(shares, caps))

    def test_total_above_caps_rejected(self):
        with pytest.raises(ValueError):
            allocate_capped(10, [1, 1], [4, 5])


class TestConversions:
    """元/分换算"""

    def test_to_cents(self):
        assert to_cents(1000) == 100000
        assert to_cents("1000.50") == 100050
        assert to_cents(0.015) == 2
        assert to_cents(None) == 0

    def test_cents_to_amount(self):
        assert cents_to_amount(293000) == 2930.0
        assert cents_to_amount(5) == 0.05

    def test_format_amount(self):
        assert format_amount(293000) == "₱2,930.00"
