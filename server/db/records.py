# user_items 行读取与JSON字段处理

import json
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

import sqlite3

from utils.exceptions import NotFoundError

ITEM_COLUMNS = """
    id, user_id, product_id, item_type, quantity, status, order_progress,
    payment_status, payment_method, payment_id, price_cents, total_amount_cents,
    addons, delivery_address_id, branch, receipt_ref, cart_id,
    inventory_reserved, inventory_deducted, meta, progress_history,
    admin_notes, estimated_delivery_date, created_at, updated_at
"""


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def load_json(value: Optional[str], default: Any) -> Any:
    if not value:
        return default
    try:
        return json.loads(value)
    except (TypeError, ValueError):
        return default


def dump_json(value: Any) -> Optional[str]:
    if value is None:
        return None
    return json.dumps(value, ensure_ascii=False, default=str)


def item_to_dict(row: sqlite3.Row) -> Dict[str, Any]:
    """把 user_items 行转换为字典，解析 JSON 字段并把标记列转换为布尔值"""
    item = dict(row)
    item['addons'] = load_json(item.get('addons'), [])
    item['meta'] = load_json(item.get('meta'), {})
    item['progress_history'] = load_json(item.get('progress_history'), [])
    item['inventory_reserved'] = bool(item.get('inventory_reserved'))
    item['inventory_deducted'] = bool(item.get('inventory_deducted'))
    return item


def fetch_item(conn: sqlite3.Connection, item_id: str) -> Dict[str, Any]:
    """
    读取单个订单行

    Raises:
        NotFoundError: 订单行不存在
    """
    row = conn.execute(
        f"SELECT {ITEM_COLUMNS} FROM user_items WHERE id = ?", [item_id]
    ).fetchone()
    if not row:
        raise NotFoundError(f"订单记录 {item_id} 不存在", data={"id": item_id})
    return item_to_dict(row)


def fetch_items(conn: sqlite3.Connection, item_ids: Iterable[str]) -> List[Dict[str, Any]]:
    """按传入顺序读取多个订单行，不存在的ID被忽略"""
    ids = list(item_ids)
    if not ids:
        return []
    placeholders = ','.join(['?' for _ in ids])
    rows = conn.execute(
        f"SELECT {ITEM_COLUMNS} FROM user_items WHERE id IN ({placeholders})", ids
    ).fetchall()
    by_id = {row['id']: item_to_dict(row) for row in rows}
    return [by_id[item_id] for item_id in ids if item_id in by_id]


def append_progress(item: Dict[str, Any], status: str, progress: str,
                    note: Optional[str] = None, actor: Optional[str] = None) -> List[Dict[str, Any]]:
    history = list(item.get('progress_history') or [])
    entry = {
        'status': status,
        'progress': progress,
        'at': utc_now(),
    }
    if note:
        entry['note'] = note
    if actor:
        entry['by'] = actor
    history.append(entry)
    return history
