# 定价引擎
# 纯函数实现：计算商品行金额、分摊优惠券折扣与预约费，不访问数据库

from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional, Sequence

from .exceptions import EmptyCartError, ValidationError
from .money import allocate, allocate_capped, to_cents, cents_to_amount

VOUCHER_TYPES = ("percent", "amount")


@dataclass(frozen=True)
class Addon:
    """商品行附加项（例如颜色定制），费用按行计算一次"""
    key: str
    label: str
    fee_cents: int
    value: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Addon":
        # 兼容两种存储格式：fee（元）或 fee_cents（分）
        if "fee_cents" in data:
            fee_cents = int(data.get("fee_cents") or 0)
        else:
            fee_cents = to_cents(data.get("fee") or 0)
        return cls(
            key=str(data.get("key", "addon")),
            label=str(data.get("label", data.get("key", "addon"))),
            fee_cents=max(0, fee_cents),
            value=str(data.get("value") or ""),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "label": self.label,
            "fee_cents": self.fee_cents,
            "value": self.value,
        }


@dataclass(frozen=True)
class LineItem:
    product_id: str
    quantity: int
    unit_price_cents: int
    addons: Sequence[Addon] = ()
    name: str = "Product"
    record_id: Optional[str] = None
    cart_id: Optional[str] = None

    def __post_init__(self):
        if self.quantity < 1:
            raise ValidationError(f"商品 {self.product_id} 数量必须大于0")
        if self.unit_price_cents < 0:
            raise ValidationError(f"商品 {self.product_id} 单价不能为负数")

    @property
    def addons_cents(self) -> int:
        return sum(addon.fee_cents for addon in self.addons)

    @property
    def gross_cents(self) -> int:
        return self.unit_price_cents * self.quantity + self.addons_cents


@dataclass(frozen=True)
class Voucher:
    code: str
    type: str
    value: Decimal

    def __post_init__(self):
        if self.type not in VOUCHER_TYPES:
            raise ValidationError(f"不支持的优惠券类型: {self.type}")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Voucher":
        return cls(
            code=str(data["code"]).strip().upper(),
            type=str(data["type"]),
            value=Decimal(str(data["value"])),
        )


@dataclass
class LineBreakdown:
    """单个商品行的定价明细，写入 user_items.meta 供展示和回调对账使用"""
    product_id: str
    name: str
    quantity: int
    unit_price_cents: int
    addons_cents: int
    gross_cents: int
    discount_cents: int
    net_cents: int
    reservation_fee_share_cents: int
    record_id: Optional[str] = None
    cart_id: Optional[str] = None

    @property
    def final_cents(self) -> int:
        return self.net_cents + self.reservation_fee_share_cents

    def to_meta(self) -> Dict[str, Any]:
        return {
            "product_name": self.name,
            "unit_price_cents": self.unit_price_cents,
            "addons_total_cents": self.addons_cents,
            "gross_cents": self.gross_cents,
            "discount_cents": self.discount_cents,
            "net_cents": self.net_cents,
            "reservation_fee_share_cents": self.reservation_fee_share_cents,
            "final_total_cents": self.final_cents,
        }


@dataclass
class PricingResult:
    lines: List[LineBreakdown]
    subtotal_cents: int
    addons_total_cents: int
    discount_cents: int
    reservation_fee_cents: int
    voucher: Optional[Voucher] = None
    total_cents: int = field(init=False)

    def __post_init__(self):
        self.total_cents = sum(line.net_cents for line in self.lines) + self.reservation_fee_cents

    @property
    def pre_discount_cents(self) -> int:
        return self.subtotal_cents + self.addons_total_cents

    def breakdown_for(self, record_id: str) -> LineBreakdown:
        for line in self.lines:
            if line.record_id == record_id:
                return line
        raise KeyError(record_id)

    def provider_line_items(self, currency: str) -> List[Dict[str, Any]]:
        """
        生成支付渠道的商品行

        每行数量固定为1、金额为该行最终金额，保证渠道侧合计与 total_cents 一致
        """
        items = []
        for line in self.lines:
            items.append({
                "name": f"{line.name} x{line.quantity}" if line.quantity > 1 else line.name,
                "quantity": 1,
                "amount": line.final_cents,
                "currency": currency.upper(),
                "description": f"{line.name} (qty {line.quantity}) incl. reservation fee share",
            })
        return items

    def to_metadata(self) -> Dict[str, str]:
        """回调时回传的金额字段（字符串，单位元）"""
        return {
            "subtotal": f"{cents_to_amount(self.subtotal_cents):.2f}",
            "addons_total": f"{cents_to_amount(self.addons_total_cents):.2f}",
            "discount_value": f"{cents_to_amount(self.discount_cents):.2f}",
            "reservation_fee": f"{cents_to_amount(self.reservation_fee_cents):.2f}",
            "total_amount": f"{cents_to_amount(self.total_cents):.2f}",
            "voucher_code": self.voucher.code if self.voucher else "",
        }

    def summary(self) -> Dict[str, Any]:
        return {
            "subtotal_cents": self.subtotal_cents,
            "addons_total_cents": self.addons_total_cents,
            "discount_cents": self.discount_cents,
            "reservation_fee_cents": self.reservation_fee_cents,
            "total_cents": self.total_cents,
            "voucher_code": self.voucher.code if self.voucher else None,
        }


def voucher_discount_cents(voucher: Optional[Voucher], pre_discount_cents: int) -> int:
    """
    计算优惠券折扣金额，结果限制在 [0, pre_discount_cents]

    percent 类型按百分比四舍五入到分；amount 类型的 value 单位为元
    """
    if voucher is None or pre_discount_cents <= 0:
        return 0

    if voucher.type == "percent":
        raw = (Decimal(pre_discount_cents) * voucher.value / Decimal(100)).quantize(
            Decimal("1"), rounding=ROUND_HALF_UP
        )
        discount = int(raw)
    else:
        discount = to_cents(voucher.value)

    return max(0, min(discount, pre_discount_cents))


def price_lines(
    lines: Sequence[LineItem],
    voucher: Optional[Voucher],
    reservation_fee_cents: int,
) -> PricingResult:
    """
    对一次结账的全部商品行定价

    Args:
        lines: 商品行
        voucher: 优惠券，可为空
        reservation_fee_cents: 固定预约费（分），不参与折扣

    Returns:
        PricingResult，total_cents == sum(net) + reservation_fee_cents

    Raises:
        EmptyCartError: 没有商品行
    """
    if not lines:
        raise EmptyCartError()
    if reservation_fee_cents < 0:
        raise ValidationError("预约费不能为负数")

    gross = [line.gross_cents for line in lines]
    pre_discount = sum(gross)
    discount = voucher_discount_cents(voucher, pre_discount)

    # 每行折扣不超过该行原价
    discount_shares = allocate_capped(discount, gross, gross)
    net = [g - d for g, d in zip(gross, discount_shares)]

    # 全部商品被100%折扣时按原价权重分摊预约费
    fee_weights = net if any(net) else gross
    fee_shares = allocate(reservation_fee_cents, fee_weights)

    breakdowns = []
    for line, line_gross, line_discount, line_net, fee_share in zip(
        lines, gross, discount_shares, net, fee_shares
    ):
        breakdowns.append(LineBreakdown(
            product_id=line.product_id,
            name=line.name,
            quantity=line.quantity,
            unit_price_cents=line.unit_price_cents,
            addons_cents=line.addons_cents,
            gross_cents=line_gross,
            discount_cents=line_discount,
            net_cents=line_net,
            reservation_fee_share_cents=fee_share,
            record_id=line.record_id,
            cart_id=line.cart_id,
        ))

    return PricingResult(
        lines=breakdowns,
        subtotal_cents=sum(line.unit_price_cents * line.quantity for line in lines),
        addons_total_cents=sum(line.addons_cents for line in lines),
        discount_cents=discount,
        reservation_fee_cents=reservation_fee_cents,
        voucher=voucher,
    )
