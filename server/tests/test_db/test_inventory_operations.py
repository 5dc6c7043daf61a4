# 库存预留守卫测试

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from db.inventory_operations import InventoryOperations
from db.manager import DatabaseManager
from db.records import fetch_item
from db.schema import initialize_schema
from utils.exceptions import InventoryConflictError, NotFoundError
from tests.conftest import USER_ID, add_product, inventory_of


def insert_item(db, item_id, product_id, quantity, reserved=0, deducted=0):
    db.execute_single("""
        INSERT INTO user_items (id, user_id, product_id, item_type, quantity, status, order_progress,
                                payment_status, price_cents, inventory_reserved, inventory_deducted)
        VALUES (?, ?, ?, 'reservation', ?, 'pending_payment', 'awaiting_payment', 'pending', 100000, ?, ?)
    """, [item_id, USER_ID, product_id, quantity, reserved, deducted])
    return fetch_item(db.conn, item_id)


@pytest.fixture
def inventory_ops(test_db):
    return InventoryOperations(test_db)


class TestReserveLines:
    """结账时的库存预留"""

    def test_reserve_lines_decrements_stock(self, test_db, inventory_ops, sample_products):
        """预留成功后库存减少并写入快照"""
        items = [insert_item(test_db, "i1", "prod-a", 3), insert_item(test_db, "i2", "prod-b", 2)]

        results = inventory_ops.reserve_lines(items)

        assert [r['reserved'] for r in results] == [True, True]
        assert results[0]['before'] == 10 and results[0]['after'] == 7
        assert inventory_of(test_db, "prod-a") == 7
        assert inventory_of(test_db, "prod-b") == 3

        stored = fetch_item(test_db.conn, "i1")
        assert stored['inventory_reserved'] is True
        assert stored['meta']['inventory_snapshot']['after'] == 7

    def test_reserve_lines_is_idempotent(self, test_db, inventory_ops, sample_products):
        """已预留的行不会重复扣减"""
        items = [insert_item(test_db, "i1", "prod-a", 2)]
        inventory_ops.reserve_lines(items)
        results = inventory_ops.reserve_lines([fetch_item(test_db.conn, "i1")])

        assert results[0]['reserved'] is False
        assert inventory_of(test_db, "prod-a") == 8

    def test_reserve_lines_conflict_rolls_back_everything(self, test_db, inventory_ops, sample_products):
        """任一商品库存不足时全部回滚"""
        items = [insert_item(test_db, "i1", "prod-a", 2), insert_item(test_db, "i2", "prod-b", 6)]

        with pytest.raises(InventoryConflictError) as exc_info:
            inventory_ops.reserve_lines(items)

        assert exc_info.value.product_id == "prod-b"
        assert exc_info.value.requested == 6
        assert exc_info.value.available == 5
        assert inventory_of(test_db, "prod-a") == 10
        assert inventory_of(test_db, "prod-b") == 5
        assert fetch_item(test_db.conn, "i1")['inventory_reserved'] is False

    def test_reserve_exact_stock(self, test_db, inventory_ops, sample_products):
        """刚好用完库存"""
        inventory_ops.reserve_lines([insert_item(test_db, "i1", "prod-b", 5)])
        assert inventory_of(test_db, "prod-b") == 0

    def test_reserve_missing_product(self, test_db, inventory_ops, sample_products):
        test_db.execute_single("PRAGMA foreign_keys = OFF")
        item = insert_item(test_db, "i1", "ghost", 1)
        with pytest.raises(NotFoundError):
            inventory_ops.reserve_lines([item])


class TestConfirmAndRelease:
    """付款确认扣减与归还"""

    def test_confirm_reserved_line_only_flags(self, test_db, inventory_ops, sample_products):
        item = insert_item(test_db, "i1", "prod-a", 2)
        inventory_ops.reserve_lines([item])

        assert inventory_ops.confirm_deduction(fetch_item(test_db.conn, "i1")) == 'confirmed'
        assert inventory_ops.confirm_deduction(fetch_item(test_db.conn, "i1")) == 'already_deducted'
        assert inventory_of(test_db, "prod-a") == 8

    def test_confirm_unreserved_line_deducts(self, test_db, inventory_ops, sample_products):
        item = insert_item(test_db, "i1", "prod-a", 4)

        assert inventory_ops.confirm_deduction(item) == 'deducted'
        assert inventory_of(test_db, "prod-a") == 6
        stored = fetch_item(test_db.conn, "i1")
        assert stored['inventory_reserved'] and stored['inventory_deducted']

    def test_confirm_unreserved_line_shortfall(self, test_db, inventory_ops, sample_products):
        item = insert_item(test_db, "i1", "prod-b", 9)
        with pytest.raises(InventoryConflictError):
            inventory_ops.confirm_deduction(item)
        assert inventory_of(test_db, "prod-b") == 5

    def test_release_restores_stock_once(self, test_db, inventory_ops, sample_products):
        item = insert_item(test_db, "i1", "prod-a", 3)
        inventory_ops.reserve_lines([item])

        assert inventory_ops.release(fetch_item(test_db.conn, "i1")) == 3
        assert inventory_ops.release(fetch_item(test_db.conn, "i1")) == 0
        assert inventory_of(test_db, "prod-a") == 10


class TestConcurrentReservation:
    """两个连接同时抢最后一件库存"""

    def test_last_unit_reserved_once(self, tmp_path):
        db_path = str(tmp_path / "race.db")
        first = DatabaseManager(db_path, auto_connect=True)
        initialize_schema(first)
        add_product(first, "prod-last", 100000, 1)
        insert_item(first, "buyer-1", "prod-last", 1)
        insert_item(first, "buyer-2", "prod-last", 1)
        second = DatabaseManager(db_path, auto_connect=True)

        barrier = threading.Barrier(2)

        def reserve(db, item_id):
            item = fetch_item(db.conn, item_id)
            barrier.wait()
            try:
                InventoryOperations(db).reserve_lines([item])
            except InventoryConflictError as e:
                return e
            return "reserved"

        try:
            with ThreadPoolExecutor(max_workers=2) as pool:
                futures = [pool.submit(reserve, first, "buyer-1"), pool.submit(reserve, second, "buyer-2")]
                outcomes = [future.result() for future in futures]

            assert outcomes.count("reserved") == 1
            conflicts = [o for o in outcomes if isinstance(o, InventoryConflictError)]
            assert len(conflicts) == 1
            assert conflicts[0].product_id == "prod-last"
            assert inventory_of(first, "prod-last") == 0

            flags = [fetch_item(first.conn, item_id)['inventory_reserved'] for item_id in ("buyer-1", "buyer-2")]
            assert sorted(flags) == [False, True]
        finally:
            second.close()
            first.close()
