# 支付回调对账
# 同一笔付款的回调可能重复、乱序到达；每个订单行通过
# "payment_status 未完成才更新" 的条件UPDATE 只被确认一次

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .manager import DatabaseManager
from .inventory_operations import InventoryOperations
from .voucher_operations import VoucherOperations
from .records import append_progress, dump_json, fetch_item, load_json, utc_now
from utils.exceptions import InventoryConflictError, NotFoundError, ValidationError
from utils.money import format_amount, to_cents
from utils.order_status import (
    PAYMENT_COMPLETED_PROGRESS, PENDING_PAYMENT, RESERVED, is_active_for_pricing
)
from utils.validators import normalize_id_list

logger = logging.getLogger(__name__)

PAYMONGO_PAID_EVENT = "checkout_session.payment.paid"
PAYPAL_CAPTURE_COMPLETED_EVENT = "PAYMENT.CAPTURE.COMPLETED"


def _first(metadata: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = metadata.get(key)
        if value not in (None, ""):
            return value
    return None


@dataclass
class PaymentConfirmation:
    """一次已确认的付款，来自回调或主动查询"""
    provider: str
    receipt_ref: Optional[str] = None
    user_item_ids: List[str] = field(default_factory=list)
    cart_ids: List[str] = field(default_factory=list)
    origin: Optional[str] = None
    session_id: Optional[str] = None
    payment_reference: Optional[str] = None
    amount_cents: Optional[int] = None
    expected_total_cents: Optional[int] = None
    event_id: Optional[str] = None

    @property
    def has_correlation(self) -> bool:
        return bool(self.receipt_ref or self.user_item_ids or self.cart_ids)

    @classmethod
    def from_metadata(cls, provider: str, metadata: Dict[str, Any], **kwargs) -> "PaymentConfirmation":
        total = _first(metadata, "total_amount", "totalAmount")
        return cls(
            provider=provider,
            receipt_ref=_first(metadata, "receipt_ref", "receiptRef"),
            user_item_ids=normalize_id_list(_first(metadata, "user_item_ids", "userItemIds")),
            cart_ids=normalize_id_list(_first(metadata, "cart_item_ids", "cartItemIds")),
            origin=_first(metadata, "origin"),
            expected_total_cents=to_cents(total) if total is not None else None,
            **kwargs
        )

    @classmethod
    def from_paymongo_event(cls, payload: Any) -> Optional["PaymentConfirmation"]:
        """
        解析 PayMongo 回调

        Returns:
            非付款成功事件返回 None

        Raises:
            ValidationError: 数据格式错误或缺少订单关联信息
        """
        if not isinstance(payload, dict) or not isinstance(payload.get('data'), dict):
            raise ValidationError("回调数据格式错误")

        event = payload['data']
        attributes = event.get('attributes') or {}
        if attributes.get('type') != PAYMONGO_PAID_EVENT:
            return None

        session = attributes.get('data')
        if not isinstance(session, dict):
            raise ValidationError("回调缺少结账会话数据")
        session_attributes = session.get('attributes') or {}
        metadata = session_attributes.get('metadata') or {}

        payment_reference = None
        amount_cents = None
        payments = session_attributes.get('payments') or []
        if payments and isinstance(payments[0], dict):
            payment_reference = payments[0].get('id')
            amount_cents = (payments[0].get('attributes') or {}).get('amount')

        confirmation = cls.from_metadata(
            "paymongo",
            metadata,
            session_id=session.get('id'),
            payment_reference=payment_reference,
            amount_cents=amount_cents,
            event_id=event.get('id'),
        )
        if not confirmation.receipt_ref:
            confirmation.receipt_ref = session_attributes.get('reference_number')

        if not confirmation.has_correlation:
            raise ValidationError("回调缺少订单关联信息")
        return confirmation


class ReconcileOperations:
    """
    付款确认对账

    每个订单行在独立事务中处理，单行失败不影响同一回调中的其他行；
    失败会被收集并在结果中返回。
    """

    def __init__(self, db_manager: DatabaseManager):
        self.db = db_manager
        self.inventory = InventoryOperations(db_manager)
        self.vouchers = VoucherOperations(db_manager)

    def confirmation_for_session(self, provider: str, session_id: str,
                                 payment_reference: Optional[str] = None,
                                 event_id: Optional[str] = None) -> PaymentConfirmation:
        """
        根据保存的支付会话构造付款确认（PayPal 回调和主动扣款使用）

        Raises:
            NotFoundError: 支付会话不存在
        """
        row = self.db.conn.execute("""
            SELECT session_id, receipt_ref, origin, user_item_ids, cart_ids, amount_cents
            FROM payment_sessions WHERE session_id = ? AND provider = ?
        """, [session_id, provider]).fetchone()

        if not row:
            raise NotFoundError(f"支付会话 {session_id} 不存在", data={"session_id": session_id})

        return PaymentConfirmation(
            provider=provider,
            receipt_ref=row['receipt_ref'],
            user_item_ids=load_json(row['user_item_ids'], []),
            cart_ids=load_json(row['cart_ids'], []),
            origin=row['origin'],
            session_id=row['session_id'],
            payment_reference=payment_reference,
            expected_total_cents=row['amount_cents'],
            event_id=event_id,
        )

    def _session_item_ids(self, session_id: str) -> Optional[List[str]]:
        """已保存支付会话对应的订单行；会话不存在时返回 None"""
        row = self.db.conn.execute(
            "SELECT user_item_ids FROM payment_sessions WHERE session_id = ?", [session_id]
        ).fetchone()
        if not row:
            return None

        stored = load_json(row['user_item_ids'], [])
        if not stored:
            return []
        placeholders = ','.join(['?' for _ in stored])
        rows = self.db.conn.execute(
            f"SELECT id FROM user_items WHERE id IN ({placeholders})", stored
        ).fetchall()
        found = {r['id'] for r in rows}
        return [item_id for item_id in stored if item_id in found]

    def _resolve_item_ids(self, confirmation: PaymentConfirmation) -> List[str]:
        # 已知支付会话时只确认该会话结账的订单行
        if confirmation.session_id:
            ids = self._session_item_ids(confirmation.session_id)
            if ids is not None:
                return ids

        if confirmation.receipt_ref:
            rows = self.db.conn.execute("""
                SELECT id FROM user_items WHERE receipt_ref = ? ORDER BY created_at, rowid
            """, [confirmation.receipt_ref]).fetchall()
            if rows:
                return [row['id'] for row in rows]

        if confirmation.user_item_ids:
            placeholders = ','.join(['?' for _ in confirmation.user_item_ids])
            rows = self.db.conn.execute(
                f"SELECT id FROM user_items WHERE id IN ({placeholders})",
                confirmation.user_item_ids
            ).fetchall()
            found = {row['id'] for row in rows}
            ids = [item_id for item_id in confirmation.user_item_ids if item_id in found]
            if ids:
                return ids

        ids = []
        for cart_id in confirmation.cart_ids:
            row = self.db.conn.execute("""
                SELECT id FROM user_items WHERE cart_id = ?
                ORDER BY created_at DESC LIMIT 1
            """, [cart_id]).fetchone()
            if row:
                ids.append(row['id'])
        return ids

    def _finalize_item(self, item_id: str, confirmation: PaymentConfirmation) -> Dict[str, Any]:
        """
        确认单个订单行的付款，在调用方事务中执行

        Returns:
            {'result': 'processed' | 'skipped' | 'shortfall', 'amount_cents': int, ...}
        """
        item = fetch_item(self.db.conn, item_id)

        if item['payment_status'] in ('completed', 'refund_pending'):
            return {'result': 'skipped', 'amount_cents': 0}

        if not is_active_for_pricing(item['status']):
            raise ValidationError(f"订单记录 {item_id} 已取消，无法确认付款", data={"id": item_id})

        is_cart_line = bool(item.get('cart_id'))
        new_status = item['status']
        if item['status'] == PENDING_PAYMENT and not is_cart_line:
            new_status = RESERVED

        claimed = self.db.conn.execute("""
            UPDATE user_items
            SET payment_status = 'completed',
                status = ?,
                order_progress = ?,
                payment_id = COALESCE(payment_id, ?),
                payment_method = COALESCE(payment_method, ?),
                updated_at = CURRENT_TIMESTAMP
            WHERE id = ? AND payment_status IN ('pending', 'failed')
        """, [
            new_status, PAYMENT_COMPLETED_PROGRESS,
            confirmation.session_id, confirmation.provider, item_id
        ]).rowcount

        if claimed == 0:
            return {'result': 'skipped', 'amount_cents': 0}

        shortfall = None
        try:
            deduction = self.inventory.confirm_deduction(item)
        except InventoryConflictError as e:
            # 已付款但库存不足：保留付款确认，标记给管理员处理
            shortfall = e.data
            deduction = 'shortfall'
            logger.error(f"订单行 {item_id} 付款已确认但库存不足: {e.message}")

        meta = dict(item.get('meta') or {})
        meta['payment'] = {
            'provider': confirmation.provider,
            'session_id': confirmation.session_id,
            'reference': confirmation.payment_reference,
            'event_id': confirmation.event_id,
            'confirmed_at': utc_now(),
        }
        if shortfall:
            meta['inventory_shortfall'] = shortfall

        history = append_progress(
            item, new_status, PAYMENT_COMPLETED_PROGRESS,
            note=f"{confirmation.provider} 付款确认"
        )
        self.db.conn.execute("""
            UPDATE user_items SET meta = ?, progress_history = ? WHERE id = ?
        """, [dump_json(meta), dump_json(history), item_id])

        if is_cart_line:
            self.db.conn.execute("DELETE FROM cart WHERE id = ?", [item['cart_id']])

        return {
            'result': 'shortfall' if shortfall else 'processed',
            'amount_cents': item['total_amount_cents'],
            'deduction': deduction,
            'shortfall': shortfall,
        }

    def _complete_session(self, confirmation: PaymentConfirmation) -> bool:
        """把支付会话标记为 completed（只成功一次），同时累加优惠码使用次数"""
        with self.db.transaction():
            if confirmation.session_id:
                session = self.db.conn.execute("""
                    SELECT id, voucher_code FROM payment_sessions
                    WHERE session_id = ? AND status = 'pending'
                """, [confirmation.session_id]).fetchone()
            else:
                session = None

            if session is None and confirmation.receipt_ref:
                session = self.db.conn.execute("""
                    SELECT id, voucher_code FROM payment_sessions
                    WHERE receipt_ref = ? AND status = 'pending'
                    ORDER BY created_at DESC, id DESC LIMIT 1
                """, [confirmation.receipt_ref]).fetchone()

            if session is None:
                return False

            updated = self.db.conn.execute("""
                UPDATE payment_sessions
                SET status = 'completed', completed_at = CURRENT_TIMESTAMP
                WHERE id = ? AND status = 'pending'
            """, [session['id']]).rowcount

            if updated and session['voucher_code']:
                self.vouchers.record_usage(session['voucher_code'])

        return bool(updated)

    def _insert_notification(self, confirmation: PaymentConfirmation,
                             item_ids: List[str], total_cents: int) -> Optional[Dict[str, Any]]:
        """
        写入一条管理员通知，失败只记录日志，不影响对账结果
        """
        notification = {
            'title': "New paid order",
            'message': (
                f"{len(item_ids)} item(s) paid via {confirmation.provider}, "
                f"total {format_amount(total_cents)} (receipt {confirmation.receipt_ref or '-'})"
            ),
            'type': 'order',
            'priority': 'high',
            'recipient_role': 'admin',
            'metadata': {
                'receipt_ref': confirmation.receipt_ref,
                'provider': confirmation.provider,
                'session_id': confirmation.session_id,
                'user_item_ids': item_ids,
                'total_amount_cents': total_cents,
            },
        }

        try:
            with self.db.transaction():
                cursor = self.db.conn.execute("""
                    INSERT INTO notifications (title, message, type, priority, recipient_role, metadata, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, CURRENT_TIMESTAMP)
                """, [
                    notification['title'], notification['message'], notification['type'],
                    notification['priority'], notification['recipient_role'],
                    dump_json(notification['metadata'])
                ])
        except Exception as e:
            logger.error(f"写入管理员通知失败: {e}", exc_info=True)
            return None

        notification['id'] = cursor.lastrowid
        return notification

    def apply_payment(self, confirmation: PaymentConfirmation) -> Dict[str, Any]:
        """
        应用一次付款确认，重复调用结果不变

        Args:
            confirmation: 付款确认

        Returns:
            对账结果 {receipt_ref, processed, skipped, failed, total_paid_cents,
                      session_completed, notification, amount_mismatch}

        Raises:
            ValidationError: 无法关联到任何订单行（不做任何修改）
        """
        item_ids = self._resolve_item_ids(confirmation)
        if not item_ids:
            raise ValidationError(
                "无法根据回调信息找到订单记录",
                data={"receipt_ref": confirmation.receipt_ref}
            )

        processed, skipped, failed = [], [], []
        total_paid_cents = 0

        for item_id in item_ids:
            try:
                with self.db.transaction():
                    outcome = self._finalize_item(item_id, confirmation)
            except Exception as e:
                logger.error(f"订单行 {item_id} 付款确认失败: {e}", exc_info=True)
                failed.append({'id': item_id, 'error': str(e)})
                continue

            if outcome['result'] == 'skipped':
                skipped.append(item_id)
                continue

            processed.append(item_id)
            total_paid_cents += outcome['amount_cents']
            if outcome['result'] == 'shortfall':
                failed.append({
                    'id': item_id,
                    'error': 'inventory_shortfall',
                    'detail': outcome['shortfall'],
                })

        session_completed = False
        if processed or skipped:
            session_completed = self._complete_session(confirmation)

        notification = None
        if processed:
            notification = self._insert_notification(confirmation, processed, total_paid_cents)

        amount_mismatch = False
        if processed and not skipped and confirmation.expected_total_cents is not None:
            amount_mismatch = confirmation.expected_total_cents != total_paid_cents
            if amount_mismatch:
                logger.warning(
                    f"对账金额不一致: {confirmation.receipt_ref} 回调金额 "
                    f"{confirmation.expected_total_cents} 分，订单合计 {total_paid_cents} 分"
                )

        logger.info(
            f"付款对账完成: {confirmation.provider} {confirmation.receipt_ref} "
            f"处理 {len(processed)}，跳过 {len(skipped)}，失败 {len(failed)}"
        )

        return {
            'receipt_ref': confirmation.receipt_ref,
            'processed': processed,
            'skipped': skipped,
            'failed': failed,
            'total_paid_cents': total_paid_cents,
            'session_completed': session_completed,
            'notification': notification,
            'amount_mismatch': amount_mismatch,
        }
