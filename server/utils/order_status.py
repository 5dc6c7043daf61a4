# 订单状态机
# user_items.status 的全部取值及合法流转

from typing import Dict, FrozenSet

from .exceptions import InvalidTransitionError

PENDING_PAYMENT = "pending_payment"
RESERVED = "reserved"
APPROVED = "approved"
IN_PRODUCTION = "in_production"
PACKAGING = "packaging"
READY_FOR_DELIVERY = "ready_for_delivery"
OUT_FOR_DELIVERY = "out_for_delivery"
COMPLETED = "completed"
PENDING_CANCELLATION = "pending_cancellation"
CANCELLED = "cancelled"

ORDER_STATUSES = (
    PENDING_PAYMENT,
    RESERVED,
    APPROVED,
    IN_PRODUCTION,
    PACKAGING,
    READY_FOR_DELIVERY,
    OUT_FOR_DELIVERY,
    COMPLETED,
    PENDING_CANCELLATION,
    CANCELLED,
)

# 履约主链路，每个状态只能前进到下一个
_FULFILLMENT_CHAIN = (
    PENDING_PAYMENT,
    RESERVED,
    APPROVED,
    IN_PRODUCTION,
    PACKAGING,
    READY_FOR_DELIVERY,
    OUT_FOR_DELIVERY,
    COMPLETED,
)


def _build_transitions() -> Dict[str, FrozenSet[str]]:
    transitions = {}
    for index, status in enumerate(_FULFILLMENT_CHAIN[:-1]):
        targets = {_FULFILLMENT_CHAIN[index + 1], PENDING_CANCELLATION}
        transitions[status] = frozenset(targets)
    # 购物车订单付款后保持 pending_payment，可直接审核通过
    transitions[PENDING_PAYMENT] = transitions[PENDING_PAYMENT] | {APPROVED}
    transitions[COMPLETED] = frozenset()
    transitions[PENDING_CANCELLATION] = frozenset({CANCELLED})
    transitions[CANCELLED] = frozenset()
    return transitions


TRANSITIONS: Dict[str, FrozenSet[str]] = _build_transitions()

PROGRESS_LABELS = {
    PENDING_PAYMENT: "awaiting_payment",
    RESERVED: "payment_confirmed",
    APPROVED: "in_production",
    IN_PRODUCTION: "in_production",
    PACKAGING: "packaging",
    READY_FOR_DELIVERY: "ready_for_delivery",
    OUT_FOR_DELIVERY: "out_for_delivery",
    COMPLETED: "delivered",
    PENDING_CANCELLATION: "pending_cancellation",
    CANCELLED: "cancelled",
}

# 付款确认后的进度标签
PAYMENT_COMPLETED_PROGRESS = "payment_completed"

# 待取消和已取消的订单不再参与定价和库存预留
INACTIVE_STATUSES = frozenset({PENDING_CANCELLATION, CANCELLED})


def can_transition(current: str, target: str) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


def ensure_transition(current: str, target: str):
    """
    校验状态流转

    Raises:
        InvalidTransitionError: 非法流转
    """
    if target not in ORDER_STATUSES or not can_transition(current, target):
        raise InvalidTransitionError(current, target)


def is_active_for_pricing(status: str) -> bool:
    return status not in INACTIVE_STATUSES


def progress_label(status: str) -> str:
    return PROGRESS_LABELS.get(status, status)
