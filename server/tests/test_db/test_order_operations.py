# 订单行操作测试：预约、取消、状态流转、收据查询

import pytest

from db.records import fetch_item
from db.reconcile_operations import PaymentConfirmation
from utils.exceptions import (
    InvalidTransitionError, NotFoundError, OwnershipError, PaymentRequiredError, ValidationError
)
from tests.conftest import OTHER_USER_ID, USER_ID, add_product, inventory_of


class TestCreateReservation:
    """创建直接预约"""

    def test_create_reservation(self, test_db, order_ops, sample_products):
        result = order_ops.create_reservation(
            USER_ID, "prod-a", 2,
            addons=[{"key": "color", "label": "Color customization", "fee": 200, "value": "Bronze"}],
            branch="Makati",
            notes="请在周末送货",
        )

        assert result['item_type'] == 'reservation'
        assert result['status'] == 'pending_payment'
        assert result['payment_status'] == 'pending'
        assert result['price_cents'] == 100000
        assert result['addons'][0]['fee_cents'] == 20000
        assert result['meta']['customer_notes'] == "请在周末送货"
        assert "预约创建成功" in result['message']
        # 创建预约不占用库存
        assert inventory_of(test_db, "prod-a") == 10

    def test_create_reservation_insufficient_stock(self, order_ops, sample_products):
        with pytest.raises(ValidationError):
            order_ops.create_reservation(USER_ID, "prod-b", 6)

    def test_create_reservation_unknown_product(self, order_ops, sample_products):
        with pytest.raises(NotFoundError):
            order_ops.create_reservation(USER_ID, "ghost", 1)

    def test_create_reservation_inactive_product(self, test_db, order_ops):
        add_product(test_db, "prod-old", 10000, 5, status="inactive")
        with pytest.raises(ValidationError):
            order_ops.create_reservation(USER_ID, "prod-old", 1)

    def test_create_reservation_invalid_quantity(self, order_ops, sample_products):
        with pytest.raises(ValidationError):
            order_ops.create_reservation(USER_ID, "prod-a", 0)


class TestCancelOrder:
    """客户申请取消"""

    def test_cancel_order(self, test_db, order_ops, sample_reservation):
        result = order_ops.cancel_order(sample_reservation['id'], USER_ID, "不需要了")

        assert result['status'] == 'pending_cancellation'
        assert result['previous_status'] == 'pending_payment'
        item = fetch_item(test_db.conn, sample_reservation['id'])
        assert item['meta']['cancellation']['reason'] == "不需要了"
        assert item['progress_history'][-1]['status'] == 'pending_cancellation'

    def test_cancel_other_users_order(self, order_ops, sample_reservation):
        with pytest.raises(OwnershipError):
            order_ops.cancel_order(sample_reservation['id'], OTHER_USER_ID)

    def test_cancel_twice_rejected(self, order_ops, sample_reservation):
        order_ops.cancel_order(sample_reservation['id'], USER_ID)
        with pytest.raises(InvalidTransitionError):
            order_ops.cancel_order(sample_reservation['id'], USER_ID)

    def test_cancel_missing_order(self, order_ops, sample_products):
        with pytest.raises(NotFoundError):
            order_ops.cancel_order("missing", USER_ID)


class TestUpdateStatus:
    """履约状态流转"""

    def test_confirm_cancellation_restores_stock(self, test_db, order_ops, reconcile_ops, prepared_direct_checkout):
        """已付款的预约确认取消：归还库存并标记待退款"""
        record_id = prepared_direct_checkout.record_ids[0]
        reconcile_ops.apply_payment(
            PaymentConfirmation.from_metadata("paymongo", prepared_direct_checkout.provider_metadata())
        )
        assert inventory_of(test_db, "prod-a") == 9

        order_ops.cancel_order(record_id, USER_ID)
        result = order_ops.update_status(record_id, 'cancelled', admin_name="admin", admin_notes="客户取消")

        assert result['status'] == 'cancelled'
        assert result['payment_status'] == 'refund_pending'
        assert result['inventory_restored'] == 1
        assert inventory_of(test_db, "prod-a") == 10

        item = fetch_item(test_db.conn, record_id)
        assert item['inventory_reserved'] is False
        assert item['inventory_deducted'] is False
        assert item['admin_notes'] == "客户取消"
        assert item['progress_history'][-1]['by'] == "admin"

    def test_cancel_unpaid_reservation_keeps_payment_status(self, order_ops, sample_reservation):
        order_ops.cancel_order(sample_reservation['id'], USER_ID)
        result = order_ops.update_status(sample_reservation['id'], 'cancelled')

        assert result['payment_status'] == 'pending'
        assert result['inventory_restored'] == 0

    def test_fulfillment_progress(self, test_db, order_ops, reconcile_ops, prepared_direct_checkout):
        record_id = prepared_direct_checkout.record_ids[0]
        reconcile_ops.apply_payment(
            PaymentConfirmation.from_metadata("paymongo", prepared_direct_checkout.provider_metadata())
        )

        result = order_ops.update_status(record_id, 'approved', estimated_delivery_date="2026-11-01")
        assert result['order_progress'] == 'in_production'
        assert fetch_item(test_db.conn, record_id)['estimated_delivery_date'] == "2026-11-01"

    def test_unpaid_record_cannot_advance(self, test_db, order_ops, sample_reservation):
        """未付款的预约不能审核通过，只能取消"""
        for target in ('reserved', 'approved'):
            with pytest.raises(PaymentRequiredError):
                order_ops.update_status(sample_reservation['id'], target)
        assert fetch_item(test_db.conn, sample_reservation['id'])['status'] == 'pending_payment'

        result = order_ops.update_status(sample_reservation['id'], 'pending_cancellation')
        assert result['status'] == 'pending_cancellation'

    def test_invalid_transition(self, order_ops, sample_reservation):
        with pytest.raises(InvalidTransitionError):
            order_ops.update_status(sample_reservation['id'], 'completed')


class TestQueries:
    """收据与订单列表查询"""

    def test_get_receipt(self, order_ops, prepared_cart_checkout):
        receipt = order_ops.get_receipt(prepared_cart_checkout.receipt_ref)

        assert [item['id'] for item in receipt['items']] == prepared_cart_checkout.record_ids
        assert receipt['total_amount_cents'] == 293000
        assert receipt['payment_session']['session_id'] == 'cs_test_1'
        assert receipt['payment_session']['status'] == 'pending'

    def test_get_missing_receipt(self, order_ops, sample_products):
        with pytest.raises(NotFoundError):
            order_ops.get_receipt("rcpt_missing")

    def test_list_user_items(self, order_ops, sample_reservation):
        order_ops.create_reservation(USER_ID, "prod-b", 1)

        assert len(order_ops.list_user_items(USER_ID)) == 2
        assert len(order_ops.list_user_items(USER_ID, status='pending_payment')) == 2
        assert order_ops.list_user_items(USER_ID, status='reserved') == []
        assert order_ops.list_user_items(OTHER_USER_ID) == []
