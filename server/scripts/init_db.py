#!/usr/bin/env python3
# 数据库初始化脚本：建表、建索引、写入示例商品和优惠码

import sys
import logging
from pathlib import Path

# 添加项目根目录到Python路径
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from db.manager import DatabaseManager, CORE_TABLES
from db.schema import create_tables, create_indexes
from utils.config import Config
from utils.logger import setup_logging

# (product_id, name, price_cents, inventory)
SAMPLE_PRODUCTS = [
    ("GL-SW-100", "Sliding Window 100 Series", 1250000, 25),
    ("GL-CW-200", "Casement Window 200 Series", 980000, 40),
    ("GL-SD-300", "Sliding Door 300 Series", 2450000, 12),
    ("GL-AW-150", "Awning Window 150 Series", 760000, 30),
]

# (code, type, value, min_subtotal_cents, max_uses)
SAMPLE_DISCOUNT_CODES = [
    ("WELCOME10", "percent", "10", None, None),
    ("LESS1000", "amount", "1000", 500000, 100),
]


def insert_initial_data(db_manager: DatabaseManager):
    """
    插入示例数据，已存在的记录保持不变
    """
    with db_manager.transaction() as conn:
        for product_id, name, price_cents, inventory in SAMPLE_PRODUCTS:
            inserted = conn.execute("""
                INSERT OR IGNORE INTO products (product_id, name, price_cents, inventory, status)
                VALUES (?, ?, ?, ?, 'active')
            """, [product_id, name, price_cents, inventory]).rowcount
            if inserted:
                logging.info(f"成功创建示例商品: {name}")

        for code, voucher_type, value, min_subtotal, max_uses in SAMPLE_DISCOUNT_CODES:
            inserted = conn.execute("""
                INSERT OR IGNORE INTO discount_codes (code, type, value, active, min_subtotal_cents, max_uses)
                VALUES (?, ?, ?, 1, ?, ?)
            """, [code, voucher_type, value, min_subtotal, max_uses]).rowcount
            if inserted:
                logging.info(f"成功创建示例优惠码: {code}")


def main():
    """
    主函数：初始化数据库
    """
    config = Config()
    setup_logging(config.config)

    db_path = config.get_database_config()["path"]
    logging.info(f"开始初始化数据库: {db_path}")
    logging.info(f"配置环境: {config.env}")

    db_manager = DatabaseManager(db_path)
    try:
        db_manager.connect()

        logging.info("创建数据表...")
        create_tables(db_manager)

        logging.info("创建索引...")
        create_indexes(db_manager)

        logging.info("插入初始数据...")
        insert_initial_data(db_manager)

        db_manager.check_integrity()

        logging.info("数据库初始化完成!")
        logging.info("数据表状态:")
        for table_name in CORE_TABLES:
            info = db_manager.get_table_info(table_name)
            logging.info(f"  - {table_name}: {info['record_count']} 条记录")

    except Exception as e:
        logging.error(f"数据库初始化失败: {e}")
        sys.exit(1)
    finally:
        db_manager.close()


if __name__ == "__main__":
    main()
