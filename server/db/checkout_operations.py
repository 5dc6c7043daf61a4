# 结账编排的数据库部分
# 解析结账来源（购物车/直接预约）→ 校验优惠码 → 定价 → 预留库存 → 写入定价明细

import logging
import secrets
import time
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple, Union

from .manager import DatabaseManager
from .inventory_operations import InventoryOperations
from .voucher_operations import VoucherOperations
from .records import (
    ITEM_COLUMNS, dump_json, fetch_item, fetch_items, item_to_dict, load_json, utc_now
)
from utils.exceptions import (
    EmptyCartError, NotFoundError, OwnershipError, ReceiptConflictError, ValidationError
)
from utils.order_status import PENDING_PAYMENT, is_active_for_pricing, progress_label
from utils.pricing import Addon, LineItem, PricingResult, price_lines
from utils.validators import validate_payment_method, validate_redirect_url, normalize_id_list

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CartOrigin:
    """从购物车行发起的结账"""
    cart_ids: Tuple[str, ...]

    kind = "cart"

    @property
    def ids(self) -> Tuple[str, ...]:
        return self.cart_ids


@dataclass(frozen=True)
class DirectOrigin:
    """从已存在的预约记录发起的结账"""
    record_ids: Tuple[str, ...]

    kind = "direct"

    @property
    def ids(self) -> Tuple[str, ...]:
        return self.record_ids


Origin = Union[CartOrigin, DirectOrigin]


def build_origin(cart_ids: Optional[List[Any]], user_item_ids: Optional[List[Any]]) -> Origin:
    """
    根据请求字段构造结账来源，两个字段必须且只能提供一个

    Raises:
        ValidationError: 同时提供或都未提供
    """
    carts = normalize_id_list(cart_ids)
    records = normalize_id_list(user_item_ids)

    if carts and records:
        raise ValidationError("cart_ids 和 user_item_ids 不能同时提供")
    if carts:
        return CartOrigin(tuple(carts))
    if records:
        return DirectOrigin(tuple(records))
    raise EmptyCartError()


def generate_receipt_ref() -> str:
    """生成收据引用号，格式 rcpt_<毫秒时间戳>_<6位随机>"""
    return f"rcpt_{int(time.time() * 1000)}_{secrets.token_hex(3)}"


@dataclass
class OrderIntent:
    origin: Origin
    user_id: str
    payment_method: str
    success_url: str
    cancel_url: str
    payment_type: str = "full"
    voucher_code: Optional[str] = None
    delivery_address_id: Optional[str] = None
    branch: Optional[str] = None
    receipt_ref: Optional[str] = None


@dataclass
class PreparedCheckout:
    """已定价并预留库存的结账，等待创建支付渠道会话"""
    intent: OrderIntent
    receipt_ref: str
    items: List[Dict[str, Any]]
    pricing: PricingResult

    @property
    def origin_kind(self) -> str:
        return self.intent.origin.kind

    @property
    def record_ids(self) -> List[str]:
        return [item['id'] for item in self.items]

    @property
    def cart_ids(self) -> List[str]:
        return [item['cart_id'] for item in self.items if item.get('cart_id')]

    def provider_metadata(self) -> Dict[str, str]:
        """回传给支付渠道的 metadata，回调时原样带回，值全部为字符串"""
        metadata = {
            "origin": self.origin_kind,
            "receipt_ref": self.receipt_ref,
            "user_id": str(self.intent.user_id),
            "payment_method": self.intent.payment_method,
            "payment_type": self.intent.payment_type,
            "user_item_ids": ",".join(self.record_ids),
            "cart_item_ids": ",".join(self.cart_ids),
        }
        metadata.update(self.pricing.to_metadata())
        return metadata


class CheckoutOperations:
    """
    结账编排的数据库操作

    prepare_checkout 在单个事务中完成来源解析、定价、库存预留和明细写入；
    任何一步失败（包括任一商品库存不足）都会整体回滚。
    """

    def __init__(self, db_manager: DatabaseManager, reservation_fee_cents: int):
        self.db = db_manager
        self.reservation_fee_cents = reservation_fee_cents
        self.inventory = InventoryOperations(db_manager)
        self.vouchers = VoucherOperations(db_manager)

    def _validate_intent(self, intent: OrderIntent):
        if not validate_redirect_url(intent.success_url) or not validate_redirect_url(intent.cancel_url):
            raise ValidationError("缺少或无效的支付跳转地址 success_url / cancel_url")
        if not validate_payment_method(intent.payment_method):
            raise ValidationError(f"不支持的支付方式: {intent.payment_method}")
        if not intent.user_id:
            raise ValidationError("缺少用户ID")
        if not intent.origin.ids:
            raise EmptyCartError()

    def _product_names(self, product_ids: List[str]) -> Dict[str, str]:
        if not product_ids:
            return {}
        placeholders = ','.join(['?' for _ in product_ids])
        rows = self.db.conn.execute(
            f"SELECT product_id, name FROM products WHERE product_id IN ({placeholders})",
            product_ids
        ).fetchall()
        return {row['product_id']: row['name'] for row in rows}

    def _materialize_cart(self, intent: OrderIntent, receipt_ref: str) -> List[Dict[str, Any]]:
        """
        把购物车行转换为 pending_payment 订单行

        同一购物车行已有未付款的订单行时复用它（上次结账未完成），
        数量变化且已预留库存时先归还再重新预留。
        """
        cart_ids = list(intent.origin.ids)
        placeholders = ','.join(['?' for _ in cart_ids])
        rows = self.db.conn.execute(f"""
            SELECT c.id, c.user_id, c.product_id, c.quantity, c.addons,
                   p.price_cents, p.status AS product_status
            FROM cart c
            LEFT JOIN products p ON p.product_id = c.product_id
            WHERE c.id IN ({placeholders})
        """, cart_ids).fetchall()

        rows_by_id = {row['id']: row for row in rows}
        missing = [cart_id for cart_id in cart_ids if cart_id not in rows_by_id]
        if missing:
            raise NotFoundError(f"购物车记录不存在: {missing}", data={"cart_ids": missing})

        items = []
        for cart_id in cart_ids:
            row = rows_by_id[cart_id]
            if str(row['user_id']) != str(intent.user_id):
                raise OwnershipError("只能结算自己的购物车", data={"cart_id": cart_id})
            if row['price_cents'] is None:
                raise NotFoundError(f"商品 {row['product_id']} 不存在", data={"product_id": row['product_id']})
            if row['product_status'] != 'active':
                raise ValidationError(f"商品 {row['product_id']} 已下架", data={"product_id": row['product_id']})

            existing = self.db.conn.execute(f"""
                SELECT {ITEM_COLUMNS} FROM user_items
                WHERE cart_id = ? AND user_id = ?
                  AND payment_status = 'pending' AND status = ?
                ORDER BY created_at DESC
                LIMIT 1
            """, [cart_id, intent.user_id, PENDING_PAYMENT]).fetchone()

            if existing:
                item = item_to_dict(existing)
                if item['inventory_reserved'] and item['quantity'] != row['quantity']:
                    self.inventory.release(item)
                self.db.conn.execute("""
                    UPDATE user_items
                    SET quantity = ?, price_cents = ?, addons = ?, receipt_ref = ?,
                        updated_at = CURRENT_TIMESTAMP
                    WHERE id = ?
                """, [row['quantity'], row['price_cents'], row['addons'], receipt_ref, item['id']])
                logger.info(f"复用购物车 {cart_id} 的未付款订单行 {item['id']}")
            else:
                item_id = str(uuid.uuid4())
                self.db.conn.execute("""
                    INSERT INTO user_items (
                        id, user_id, product_id, item_type, quantity, status, order_progress,
                        payment_status, price_cents, addons, receipt_ref, cart_id, meta,
                        created_at, updated_at
                    ) VALUES (?, ?, ?, 'order', ?, ?, ?, 'pending', ?, ?, ?, ?, '{}',
                              CURRENT_TIMESTAMP, CURRENT_TIMESTAMP)
                """, [
                    item_id, intent.user_id, row['product_id'], row['quantity'],
                    PENDING_PAYMENT, progress_label(PENDING_PAYMENT),
                    row['price_cents'], row['addons'], receipt_ref, cart_id
                ])
                item = {'id': item_id}

            items.append(fetch_item(self.db.conn, item['id']))

        return items

    def _load_direct(self, intent: OrderIntent, receipt_ref: str) -> List[Dict[str, Any]]:
        record_ids = list(intent.origin.ids)
        items = fetch_items(self.db.conn, record_ids)

        found = {item['id'] for item in items}
        missing = [record_id for record_id in record_ids if record_id not in found]
        if missing:
            raise NotFoundError(f"预约记录不存在: {missing}", data={"user_item_ids": missing})

        for item in items:
            if str(item['user_id']) != str(intent.user_id):
                raise OwnershipError("只能结算自己的预约", data={"id": item['id']})
            if item['item_type'] != 'reservation':
                raise ValidationError(
                    "直接结账只支持预约类型的记录",
                    data={"id": item['id'], "item_type": item['item_type']}
                )
            if item['payment_status'] != 'pending':
                raise ValidationError(f"预约 {item['id']} 已付款或不可支付", data={"id": item['id']})
            if not is_active_for_pricing(item['status']):
                raise ValidationError(f"预约 {item['id']} 已取消", data={"id": item['id']})
            if item['status'] != PENDING_PAYMENT:
                raise ValidationError(
                    f"预约 {item['id']} 当前状态为 {item['status']}，无法结账",
                    data={"id": item['id'], "status": item['status']}
                )

        placeholders = ','.join(['?' for _ in record_ids])
        self.db.conn.execute(
            f"UPDATE user_items SET receipt_ref = ?, updated_at = CURRENT_TIMESTAMP WHERE id IN ({placeholders})",
            [receipt_ref] + record_ids
        )
        for item in items:
            item['receipt_ref'] = receipt_ref

        return items

    def _ensure_receipt_available(self, intent: OrderIntent, receipt_ref: str, record_ids: List[str]):
        """
        客户端指定的收据引用号只能用于本次结账的这些订单行

        Raises:
            ReceiptConflictError: 引用号已关联其他用户、其他订单行或已完成的支付会话
        """
        placeholders = ','.join(['?' for _ in record_ids])
        other = self.db.conn.execute(f"""
            SELECT id FROM user_items
            WHERE receipt_ref = ? AND id NOT IN ({placeholders})
            LIMIT 1
        """, [receipt_ref] + record_ids).fetchone()
        if other:
            raise ReceiptConflictError(receipt_ref)

        sessions = self.db.conn.execute("""
            SELECT user_id, status, user_item_ids FROM payment_sessions WHERE receipt_ref = ?
        """, [receipt_ref]).fetchall()
        for session in sessions:
            if str(session['user_id']) != str(intent.user_id) or session['status'] == 'completed':
                raise ReceiptConflictError(receipt_ref)
            if set(load_json(session['user_item_ids'], [])) - set(record_ids):
                raise ReceiptConflictError(receipt_ref)

    def _line_items(self, items: List[Dict[str, Any]]) -> List[LineItem]:
        names = self._product_names(list({item['product_id'] for item in items}))
        lines = []
        for item in items:
            lines.append(LineItem(
                product_id=item['product_id'],
                quantity=item['quantity'],
                unit_price_cents=item['price_cents'],
                addons=tuple(Addon.from_dict(addon) for addon in item['addons']),
                name=names.get(item['product_id'], "Product"),
                record_id=item['id'],
                cart_id=item.get('cart_id'),
            ))
        return lines

    def _persist_breakdown(self, intent: OrderIntent, receipt_ref: str,
                           items: List[Dict[str, Any]], pricing: PricingResult):
        items_by_id = {item['id']: item for item in items}
        checkout_meta = {
            "receipt_ref": receipt_ref,
            "origin": intent.origin.kind,
            "payment_type": intent.payment_type,
            "voucher_code": pricing.voucher.code if pricing.voucher else None,
            "order_total_cents": pricing.total_cents,
            "reservation_fee_cents": pricing.reservation_fee_cents,
            "prepared_at": utc_now(),
        }

        for line in pricing.lines:
            item = items_by_id[line.record_id]
            meta = dict(item.get('meta') or {})
            meta['pricing'] = line.to_meta()
            meta['checkout'] = checkout_meta
            self.db.conn.execute("""
                UPDATE user_items
                SET total_amount_cents = ?, meta = ?, receipt_ref = ?,
                    delivery_address_id = COALESCE(?, delivery_address_id),
                    branch = COALESCE(?, branch),
                    payment_method = ?,
                    updated_at = CURRENT_TIMESTAMP
                WHERE id = ?
            """, [
                line.final_cents, dump_json(meta), receipt_ref,
                intent.delivery_address_id, intent.branch, intent.payment_method,
                item['id']
            ])
            item['meta'] = meta
            item['total_amount_cents'] = line.final_cents

    def prepare_checkout(self, intent: OrderIntent) -> PreparedCheckout:
        """
        结账准备：解析来源、定价、预留库存并写入每行的定价明细

        Args:
            intent: 结账意图

        Returns:
            PreparedCheckout

        Raises:
            ValidationError / EmptyCartError: 参数错误，无任何修改
            NotFoundError / OwnershipError: 记录不存在或不属于该用户
            InventoryConflictError: 任一商品库存不足，整个结账回滚
            ReceiptConflictError: 指定的收据引用号已被占用
        """
        self._validate_intent(intent)
        receipt_ref = intent.receipt_ref or generate_receipt_ref()

        def prepare_operation():
            if isinstance(intent.origin, CartOrigin):
                items = self._materialize_cart(intent, receipt_ref)
            elif isinstance(intent.origin, DirectOrigin):
                items = self._load_direct(intent, receipt_ref)
            else:
                raise ValidationError(f"未知的结账来源: {intent.origin!r}")

            if not items:
                raise EmptyCartError()
            if intent.receipt_ref:
                self._ensure_receipt_available(intent, receipt_ref, [item['id'] for item in items])

            lines = self._line_items(items)
            voucher = None
            if intent.voucher_code:
                voucher = self.vouchers.resolve_voucher(
                    intent.voucher_code, sum(line.gross_cents for line in lines)
                )

            pricing = price_lines(lines, voucher, self.reservation_fee_cents)
            self.inventory.reserve_lines(items)
            self._persist_breakdown(intent, receipt_ref, items, pricing)

            return PreparedCheckout(
                intent=intent,
                receipt_ref=receipt_ref,
                items=items,
                pricing=pricing,
            )

        prepared = self.db.execute_transaction([prepare_operation])[0]
        logger.info(
            f"结账准备完成: {receipt_ref} 来源 {intent.origin.kind}，"
            f"{len(prepared.items)} 行，合计 {prepared.pricing.total_cents} 分"
        )
        return prepared

    def record_payment_session(self, prepared: PreparedCheckout, provider: str,
                               session_id: str, currency: str,
                               provider_payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        保存支付会话（pending）并把渠道会话ID写入订单行的 payment_id
        """

        def record_session_operation():
            self.db.conn.execute("""
                INSERT INTO payment_sessions (
                    session_id, provider, user_id, receipt_ref, origin, user_item_ids, cart_ids,
                    amount_cents, currency, status, voucher_code, metadata, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, 'pending', ?, ?, CURRENT_TIMESTAMP)
            """, [
                session_id, provider, prepared.intent.user_id, prepared.receipt_ref,
                prepared.origin_kind, dump_json(prepared.record_ids), dump_json(prepared.cart_ids),
                prepared.pricing.total_cents, currency,
                prepared.pricing.voucher.code if prepared.pricing.voucher else None,
                dump_json({
                    "provider_metadata": prepared.provider_metadata(),
                    "provider_payload": provider_payload or {},
                }),
            ])

            placeholders = ','.join(['?' for _ in prepared.record_ids])
            self.db.conn.execute(
                f"UPDATE user_items SET payment_id = ?, updated_at = CURRENT_TIMESTAMP WHERE id IN ({placeholders})",
                [session_id] + prepared.record_ids
            )

            return {
                'session_id': session_id,
                'provider': provider,
                'receipt_ref': prepared.receipt_ref,
                'amount_cents': prepared.pricing.total_cents,
                'currency': currency,
                'status': 'pending',
            }

        result = self.db.execute_transaction([record_session_operation])[0]
        logger.info(f"支付会话已保存: {provider} {session_id} ({prepared.receipt_ref})")
        return result
