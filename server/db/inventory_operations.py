# 库存预留与扣减
# 所有库存变更都是单条条件UPDATE（inventory >= 需求量），并以 user_items 的
# inventory_reserved / inventory_deducted 列作为幂等标记

import logging
from typing import Any, Dict, List, Tuple

from .manager import DatabaseManager
from .records import dump_json, utc_now
from utils.exceptions import InventoryConflictError, NotFoundError

logger = logging.getLogger(__name__)


class InventoryOperations:
    """
    库存预留守卫

    方法都在 self.db.transaction() 中执行；调用方已经开启事务时复用外层事务，
    任一商品行库存不足都会让外层事务整体回滚。
    """

    def __init__(self, db_manager: DatabaseManager):
        self.db = db_manager

    def _decrement(self, product_id: str, quantity: int) -> Tuple[int, int]:
        """
        条件扣减库存

        Returns:
            (扣减前库存, 扣减后库存)

        Raises:
            NotFoundError: 商品不存在
            InventoryConflictError: 库存不足，此时没有任何写入
        """
        cursor = self.db.conn.execute("""
            UPDATE products
            SET inventory = inventory - ?,
                updated_at = CURRENT_TIMESTAMP
            WHERE product_id = ? AND inventory >= ?
        """, [quantity, product_id, quantity])

        current = self.db.conn.execute(
            "SELECT inventory FROM products WHERE product_id = ?", [product_id]
        ).fetchone()

        if current is None:
            raise NotFoundError(f"商品 {product_id} 不存在", data={"product_id": product_id})

        if cursor.rowcount == 0:
            logger.warning(f"库存不足: 商品 {product_id} 需要 {quantity}，剩余 {current[0]}")
            raise InventoryConflictError(product_id, quantity, current[0])

        after = current[0]
        return after + quantity, after

    def reserve_lines(self, items: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """
        为一次结账的全部订单行预留库存（全部成功或全部失败）

        已经 inventory_reserved 的行直接跳过。成功预留的行写入库存快照到 meta。

        Args:
            items: 订单行字典（records.item_to_dict 的结果），会被原地更新

        Returns:
            每行的预留结果 {id, product_id, quantity, reserved, before, after}
        """
        results = []
        with self.db.transaction():
            for item in items:
                if item.get('inventory_reserved'):
                    results.append({
                        'id': item['id'],
                        'product_id': item['product_id'],
                        'quantity': item['quantity'],
                        'reserved': False,
                    })
                    continue

                claimed = self.db.conn.execute("""
                    UPDATE user_items
                    SET inventory_reserved = 1, updated_at = CURRENT_TIMESTAMP
                    WHERE id = ? AND inventory_reserved = 0
                """, [item['id']]).rowcount
                if claimed == 0:
                    results.append({
                        'id': item['id'],
                        'product_id': item['product_id'],
                        'quantity': item['quantity'],
                        'reserved': False,
                    })
                    continue

                before, after = self._decrement(item['product_id'], item['quantity'])

                meta = dict(item.get('meta') or {})
                meta['inventory_snapshot'] = {
                    'before': before,
                    'after': after,
                    'reserved_at': utc_now(),
                }
                self.db.conn.execute(
                    "UPDATE user_items SET meta = ? WHERE id = ?",
                    [dump_json(meta), item['id']]
                )
                item['meta'] = meta
                item['inventory_reserved'] = True

                results.append({
                    'id': item['id'],
                    'product_id': item['product_id'],
                    'quantity': item['quantity'],
                    'reserved': True,
                    'before': before,
                    'after': after,
                })

        reserved = sum(1 for r in results if r['reserved'])
        logger.info(f"库存预留完成: 新预留 {reserved} 行，跳过 {len(results) - reserved} 行")
        return results

    def confirm_deduction(self, item: Dict[str, Any]) -> str:
        """
        付款确认时的库存扣减，可重复调用

        Returns:
            'already_deducted'：此前已经扣减过
            'confirmed'：结账时已预留，本次只标记为已扣减
            'deducted'：本次实际扣减了库存

        Raises:
            InventoryConflictError: 未预留且库存不足
        """
        with self.db.transaction():
            if item.get('inventory_deducted'):
                return 'already_deducted'

            if item.get('inventory_reserved'):
                updated = self.db.conn.execute("""
                    UPDATE user_items
                    SET inventory_deducted = 1, updated_at = CURRENT_TIMESTAMP
                    WHERE id = ? AND inventory_deducted = 0
                """, [item['id']]).rowcount
                item['inventory_deducted'] = True
                return 'confirmed' if updated else 'already_deducted'

            self._decrement(item['product_id'], item['quantity'])
            self.db.conn.execute("""
                UPDATE user_items
                SET inventory_reserved = 1, inventory_deducted = 1, updated_at = CURRENT_TIMESTAMP
                WHERE id = ?
            """, [item['id']])
            item['inventory_reserved'] = True
            item['inventory_deducted'] = True
            return 'deducted'

    def release(self, item: Dict[str, Any]) -> int:
        """
        归还订单行占用的库存并清除标记（取消完成或重新预留时使用）

        Returns:
            归还的数量，没有占用库存时为0
        """
        with self.db.transaction():
            cleared = self.db.conn.execute("""
                UPDATE user_items
                SET inventory_reserved = 0, inventory_deducted = 0, updated_at = CURRENT_TIMESTAMP
                WHERE id = ? AND (inventory_reserved = 1 OR inventory_deducted = 1)
            """, [item['id']]).rowcount

            if cleared == 0:
                return 0

            self.db.conn.execute("""
                UPDATE products
                SET inventory = inventory + ?, updated_at = CURRENT_TIMESTAMP
                WHERE product_id = ?
            """, [item['quantity'], item['product_id']])

        item['inventory_reserved'] = False
        item['inventory_deducted'] = False
        logger.info(f"已归还库存: 订单行 {item['id']} 商品 {item['product_id']} 数量 {item['quantity']}")
        return item['quantity']
