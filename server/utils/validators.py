# 数据验证器

import re
from typing import Any, Iterable, List, Optional
from urllib.parse import urlparse

from .order_status import ORDER_STATUSES

PAYMENT_METHODS = ('paymongo', 'paypal')

_RECEIPT_REF_PATTERN = re.compile(r'^[A-Za-z0-9_\-]{4,64}$')


def validate_payment_method(method: str) -> bool:
    return method in PAYMENT_METHODS


def validate_redirect_url(url: Optional[str]) -> bool:
    """
    验证支付完成/取消后的跳转地址

    Args:
        url: 跳转地址

    Returns:
        验证结果，仅接受 http/https 绝对地址
    """
    if not url or not isinstance(url, str):
        return False
    parsed = urlparse(url)
    return parsed.scheme in ('http', 'https') and bool(parsed.netloc)


def validate_receipt_ref(receipt_ref: str) -> bool:
    """
    验证收据引用号格式，如 rcpt_1718000000000_ab12cd
    """
    if not receipt_ref or not isinstance(receipt_ref, str):
        return False
    return bool(_RECEIPT_REF_PATTERN.match(receipt_ref))


def validate_order_status(status: str) -> bool:
    return status in ORDER_STATUSES


def normalize_id_list(values: Optional[Iterable[Any]]) -> List[str]:
    """
    清洗ID列表：去空白、去空值、保持顺序去重

    同时接受列表和逗号分隔的字符串（回调 metadata 中的 CSV）
    """
    if values is None:
        return []
    if isinstance(values, str):
        values = values.split(',')

    result = []
    seen = set()
    for value in values:
        if value is None:
            continue
        item = str(value).strip()
        if item and item not in seen:
            seen.add(item)
            result.append(item)
    return result
