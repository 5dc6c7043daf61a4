# 金额工具
# 所有金额在系统内部以整数分（centavo）表示

from decimal import Decimal, ROUND_HALF_UP
from typing import List, Sequence, Union


def _normalize_weight(weight) -> int:
    """负数、非整数、布尔值等一律视为0"""
    if isinstance(weight, bool) or not isinstance(weight, int):
        return 0
    return weight if weight > 0 else 0


def allocate(total_cents: int, weights: Sequence[int]) -> List[int]:
    """
    按权重把整数金额分摊到多个桶中，分摊结果之和严格等于 total_cents

    除最后一个桶外，每个桶分得 floor(total * weight / sum(weights))，且不超过剩余额度；
    最后一个桶拿走全部剩余。所有权重为0时平均分配，余数给最后一个桶。

    Args:
        total_cents: 待分摊的总金额（分），非负整数
        weights: 各桶权重

    Returns:
        与 weights 等长的分摊结果列表
    """
    if isinstance(total_cents, bool) or not isinstance(total_cents, int):
        raise ValueError(f"分摊金额必须为整数分: {total_cents!r}")
    if total_cents < 0:
        raise ValueError(f"分摊金额不能为负数: {total_cents}")

    normalized = [_normalize_weight(w) for w in weights]
    count = len(normalized)

    if count == 0:
        if total_cents:
            raise ValueError("没有可分摊的对象")
        return []

    weight_sum = sum(normalized)

    if weight_sum == 0:
        base = total_cents // count
        shares = [base] * count
        shares[-1] += total_cents - base * count
        return shares

    shares = []
    remaining = total_cents
    for weight in normalized[:-1]:
        share = min(total_cents * weight // weight_sum, remaining)
        shares.append(share)
        remaining -= share
    shares.append(remaining)
    return shares


def allocate_capped(total_cents: int, weights: Sequence[int], caps: Sequence[int]) -> List[int]:
    """
    按权重分摊，且每个桶不超过其上限

    先按 allocate 分摊，超出上限的部分再依次补给剩余空间最大的桶，
    分摊结果之和仍严格等于 total_cents。

    Raises:
        ValueError: 总额超过全部上限之和
    """
    limits = [max(0, int(cap)) for cap in caps]
    if len(limits) != len(weights):
        raise ValueError("权重与上限数量不一致")
    if total_cents > sum(limits):
        raise ValueError(f"分摊金额 {total_cents} 超过上限合计 {sum(limits)}")

    shares = allocate(total_cents, weights)
    excess = 0
    for index, limit in enumerate(limits):
        if shares[index] > limit:
            excess += shares[index] - limit
            shares[index] = limit

    order = sorted(range(len(shares)), key=lambda i: limits[i] - shares[i], reverse=True)
    for index in order:
        if excess == 0:
            break
        take = min(limits[index] - shares[index], excess)
        shares[index] += take
        excess -= take
    return shares


def to_cents(amount: Union[int, float, str, Decimal]) -> int:
    """
    金额（元/比索）转换为分，四舍五入

    Args:
        amount: 金额，例如 1000 或 "1000.50"

    Returns:
        整数分
    """
    if amount is None:
        return 0
    value = Decimal(str(amount)) * 100
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def cents_to_amount(cents: int) -> float:
    """分转换为元，用于展示和对外返回"""
    return round(cents / 100.0, 2)


def format_amount(cents: int, symbol: str = "₱") -> str:
    return f"{symbol}{cents / 100:,.2f}"
