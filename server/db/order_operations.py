# 订单行业务操作：创建预约、取消、状态流转与查询

import logging
import uuid
from typing import Any, Dict, List, Optional

from .manager import DatabaseManager
from .inventory_operations import InventoryOperations
from .records import (
    ITEM_COLUMNS, append_progress, dump_json, fetch_item, item_to_dict, utc_now
)
from utils.exceptions import NotFoundError, OwnershipError, PaymentRequiredError, ValidationError
from utils.order_status import (
    CANCELLED, PENDING_CANCELLATION, PENDING_PAYMENT, ensure_transition, progress_label
)
from utils.pricing import Addon

logger = logging.getLogger(__name__)


class OrderOperations:
    """
    订单行（user_items）操作
    """

    def __init__(self, db_manager: DatabaseManager):
        self.db = db_manager
        self.inventory = InventoryOperations(db_manager)

    def _verify_product_active(self, product_id: str) -> Dict[str, Any]:
        row = self.db.conn.execute("""
            SELECT product_id, name, price_cents, inventory, status
            FROM products WHERE product_id = ?
        """, [product_id]).fetchone()

        if not row:
            raise NotFoundError(f"商品 {product_id} 不存在", data={"product_id": product_id})
        if row['status'] != 'active':
            raise ValidationError(f"商品 {product_id} 已下架", data={"product_id": product_id})
        return dict(row)

    def create_reservation(self, user_id: str, product_id: str, quantity: int,
                           addons: Optional[List[Dict[str, Any]]] = None,
                           delivery_address_id: Optional[str] = None,
                           branch: Optional[str] = None,
                           notes: Optional[str] = None) -> Dict[str, Any]:
        """
        创建直接预约（pending_payment，待付款），作为直接结账的入口

        库存此时不预留，在结账创建支付会话时预留

        Returns:
            新建的订单行
        """
        if quantity < 1:
            raise ValidationError("数量必须大于0")

        normalized_addons = [Addon.from_dict(addon).to_dict() for addon in (addons or [])]

        def create_reservation_operation():
            product = self._verify_product_active(product_id)
            if product['inventory'] < quantity:
                raise ValidationError(
                    f"商品 {product_id} 库存不足，当前库存 {product['inventory']} 件",
                    data={"product_id": product_id, "available": product['inventory']}
                )

            item_id = str(uuid.uuid4())
            meta = {'product_name': product['name']}
            if notes:
                meta['customer_notes'] = notes

            self.db.conn.execute("""
                INSERT INTO user_items (
                    id, user_id, product_id, item_type, quantity, status, order_progress,
                    payment_status, price_cents, addons, delivery_address_id, branch, meta,
                    progress_history, created_at, updated_at
                ) VALUES (?, ?, ?, 'reservation', ?, ?, ?, 'pending', ?, ?, ?, ?, ?, ?,
                          CURRENT_TIMESTAMP, CURRENT_TIMESTAMP)
            """, [
                item_id, user_id, product_id, quantity,
                PENDING_PAYMENT, progress_label(PENDING_PAYMENT),
                product['price_cents'], dump_json(normalized_addons),
                delivery_address_id, branch, dump_json(meta),
                dump_json([{
                    'status': PENDING_PAYMENT,
                    'progress': progress_label(PENDING_PAYMENT),
                    'at': utc_now(),
                }])
            ])

            item = fetch_item(self.db.conn, item_id)
            item['message'] = f"预约创建成功，单价 {product['price_cents'] / 100:.2f}"
            return item

        result = self.db.execute_transaction([create_reservation_operation])[0]
        logger.info(f"用户 {user_id} 创建预约 {result['id']}: 商品 {product_id} x{quantity}")
        return result

    def cancel_order(self, item_id: str, user_id: str, reason: str = "客户申请取消") -> Dict[str, Any]:
        """
        客户申请取消，只把状态改为 pending_cancellation；
        库存归还和退款在管理员确认取消时进行

        Raises:
            OwnershipError: 不是该用户的订单
            InvalidTransitionError: 当前状态不能取消
        """

        def cancel_order_operation():
            item = fetch_item(self.db.conn, item_id)

            if str(item['user_id']) != str(user_id):
                raise OwnershipError("用户只能取消自己的订单", data={"id": item_id})

            ensure_transition(item['status'], PENDING_CANCELLATION)

            meta = dict(item['meta'])
            meta['cancellation'] = {
                'reason': reason,
                'requested_at': utc_now(),
                'previous_status': item['status'],
            }
            history = append_progress(
                item, PENDING_CANCELLATION, progress_label(PENDING_CANCELLATION), note=reason
            )

            self.db.conn.execute("""
                UPDATE user_items
                SET status = ?, order_progress = ?, meta = ?, progress_history = ?,
                    updated_at = CURRENT_TIMESTAMP
                WHERE id = ?
            """, [
                PENDING_CANCELLATION, progress_label(PENDING_CANCELLATION),
                dump_json(meta), dump_json(history), item_id
            ])

            return {
                'id': item_id,
                'status': PENDING_CANCELLATION,
                'previous_status': item['status'],
                'message': '取消申请已提交，等待处理',
            }

        result = self.db.execute_transaction([cancel_order_operation])[0]
        logger.info(f"用户 {user_id} 申请取消订单行 {item_id}: {reason}")
        return result

    def update_status(self, item_id: str, new_status: str,
                      admin_name: Optional[str] = None,
                      admin_notes: Optional[str] = None,
                      estimated_delivery_date: Optional[str] = None) -> Dict[str, Any]:
        """
        履约状态流转

        确认取消（pending_cancellation → cancelled）时归还库存，
        已付款的记录标记为 refund_pending

        Raises:
            InvalidTransitionError: 非法状态流转
            PaymentRequiredError: 未付款的 pending_payment 记录只能申请取消
        """

        def update_status_operation():
            item = fetch_item(self.db.conn, item_id)
            ensure_transition(item['status'], new_status)
            if (item['status'] == PENDING_PAYMENT and new_status != PENDING_CANCELLATION
                    and item['payment_status'] != 'completed'):
                raise PaymentRequiredError(item_id, new_status)

            restored = 0
            payment_status = item['payment_status']
            if new_status == CANCELLED:
                restored = self.inventory.release(item)
                if payment_status == 'completed':
                    payment_status = 'refund_pending'

            progress = progress_label(new_status)
            history = append_progress(item, new_status, progress, note=admin_notes, actor=admin_name)

            self.db.conn.execute("""
                UPDATE user_items
                SET status = ?, order_progress = ?, payment_status = ?, progress_history = ?,
                    admin_notes = COALESCE(?, admin_notes),
                    estimated_delivery_date = COALESCE(?, estimated_delivery_date),
                    updated_at = CURRENT_TIMESTAMP
                WHERE id = ?
            """, [
                new_status, progress, payment_status, dump_json(history),
                admin_notes, estimated_delivery_date, item_id
            ])

            return {
                'id': item_id,
                'previous_status': item['status'],
                'status': new_status,
                'order_progress': progress,
                'payment_status': payment_status,
                'inventory_restored': restored,
                'message': f"订单状态已更新为 {new_status}",
            }

        result = self.db.execute_transaction([update_status_operation])[0]
        logger.info(f"订单行 {item_id} 状态 {result['previous_status']} -> {new_status} ({admin_name or 'system'})")
        return result

    def get_receipt(self, receipt_ref: str) -> Dict[str, Any]:
        """
        查询一次结账的全部订单行和支付会话（支付成功页使用）

        Raises:
            NotFoundError: 收据不存在
        """
        rows = self.db.conn.execute(f"""
            SELECT {ITEM_COLUMNS} FROM user_items
            WHERE receipt_ref = ?
            ORDER BY created_at, rowid
        """, [receipt_ref]).fetchall()

        if not rows:
            raise NotFoundError(f"收据 {receipt_ref} 不存在", data={"receipt_ref": receipt_ref})

        items = [item_to_dict(row) for row in rows]

        session_row = self.db.conn.execute("""
            SELECT session_id, provider, amount_cents, currency, status, voucher_code,
                   created_at, completed_at
            FROM payment_sessions
            WHERE receipt_ref = ?
            ORDER BY created_at DESC, id DESC
            LIMIT 1
        """, [receipt_ref]).fetchone()

        return {
            'receipt_ref': receipt_ref,
            'items': items,
            'total_amount_cents': sum(item['total_amount_cents'] for item in items),
            'payment_session': dict(session_row) if session_row else None,
        }

    def list_user_items(self, user_id: str, status: Optional[str] = None) -> List[Dict[str, Any]]:
        query = f"SELECT {ITEM_COLUMNS} FROM user_items WHERE user_id = ?"
        params: List[Any] = [user_id]
        if status:
            query += " AND status = ?"
            params.append(status)
        query += " ORDER BY created_at DESC, id"

        return [item_to_dict(row) for row in self.db.conn.execute(query, params).fetchall()]
