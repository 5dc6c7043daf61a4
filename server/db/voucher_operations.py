# 优惠码查询、校验与使用计数

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .manager import DatabaseManager
from utils.exceptions import ValidationError
from utils.money import cents_to_amount
from utils.pricing import Voucher

logger = logging.getLogger(__name__)


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class VoucherOperations:
    """
    优惠码操作

    优惠码的类型和面值以 discount_codes 表为准，客户端传入的值只用于展示
    """

    def __init__(self, db_manager: DatabaseManager):
        self.db = db_manager

    def get_discount_code(self, code: str) -> Optional[Dict[str, Any]]:
        row = self.db.conn.execute("""
            SELECT code, type, value, active, starts_at, expires_at,
                   min_subtotal_cents, max_uses, used_count
            FROM discount_codes WHERE code = ?
        """, [code.strip().upper()]).fetchone()
        return dict(row) if row else None

    def resolve_voucher(self, code: str, subtotal_cents: int,
                        now: Optional[datetime] = None) -> Voucher:
        """
        校验优惠码并返回可用于定价的 Voucher

        Args:
            code: 优惠码，大小写不敏感
            subtotal_cents: 折扣前金额（分），用于最低消费校验
            now: 当前时间，测试时可指定

        Raises:
            ValidationError: 优惠码不存在、未启用、不在有效期、未达最低消费或已用完
        """
        if not code or not code.strip():
            raise ValidationError("优惠码不能为空")

        record = self.get_discount_code(code)
        if not record:
            raise ValidationError(f"优惠码 {code} 不存在", data={"code": code})

        if not record['active']:
            raise ValidationError(f"优惠码 {record['code']} 已停用", data={"code": record['code']})

        now = now or datetime.now(timezone.utc)
        starts_at = _parse_timestamp(record['starts_at'])
        expires_at = _parse_timestamp(record['expires_at'])

        if starts_at and now < starts_at:
            raise ValidationError(f"优惠码 {record['code']} 尚未生效", data={"code": record['code']})
        if expires_at and now > expires_at:
            raise ValidationError(f"优惠码 {record['code']} 已过期", data={"code": record['code']})

        min_subtotal = record['min_subtotal_cents']
        if min_subtotal and subtotal_cents < min_subtotal:
            raise ValidationError(
                f"订单金额未达到优惠码最低消费 {cents_to_amount(min_subtotal):.2f}",
                data={"code": record['code'], "min_subtotal_cents": min_subtotal}
            )

        max_uses = record['max_uses']
        if max_uses is not None and record['used_count'] >= max_uses:
            raise ValidationError(f"优惠码 {record['code']} 已达到使用次数上限", data={"code": record['code']})

        return Voucher.from_dict(record)

    def record_usage(self, code: str) -> bool:
        """
        优惠码使用次数加一，在调用方的事务中执行

        Returns:
            是否更新成功（优惠码不存在时为False）
        """
        with self.db.transaction():
            updated = self.db.conn.execute("""
                UPDATE discount_codes SET used_count = used_count + 1 WHERE code = ?
            """, [code.strip().upper()]).rowcount
        if updated:
            logger.info(f"优惠码 {code} 使用次数已累加")
        else:
            logger.warning(f"累加优惠码使用次数失败，优惠码不存在: {code}")
        return bool(updated)
