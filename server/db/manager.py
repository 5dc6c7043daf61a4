# 数据库连接和事务管理的核心组件

import sqlite3
import logging
import os
from datetime import datetime
from typing import List, Optional, Dict, Any, Callable
from contextlib import contextmanager

CORE_TABLES = ['products', 'cart', 'user_items', 'payment_sessions', 'discount_codes', 'notifications']


class DatabaseManager:
    """
    数据库管理器

    负责SQLite数据库连接管理、事务处理和基础操作。
    连接工作在自动提交模式下，事务由 transaction() 显式 BEGIN IMMEDIATE 开启，
    保证库存条件扣减与幂等标记在同一写事务中完成。
    """

    def __init__(self, db_path: str, auto_connect: bool = False):
        """
        初始化数据库管理器

        Args:
            db_path: 数据库文件路径，测试中可以使用 :memory:
            auto_connect: 是否自动连接数据库
        """
        self.db_path = db_path
        self.conn: Optional[sqlite3.Connection] = None
        self._is_connected = False

        self.logger = logging.getLogger(self.__class__.__name__)

        if auto_connect:
            self.connect()

    def connect(self) -> sqlite3.Connection:
        """
        建立数据库连接

        Returns:
            SQLite连接对象

        Raises:
            ConnectionError: 连接失败时抛出异常
        """
        try:
            if self.conn is not None:
                self.logger.warning("数据库连接已存在，先关闭现有连接")
                self.close()

            if self.db_path != ':memory:':
                db_dir = os.path.dirname(self.db_path)
                if db_dir and not os.path.exists(db_dir):
                    os.makedirs(db_dir, exist_ok=True)
                    self.logger.info(f"创建数据库目录: {db_dir}")

            # isolation_level=None: 由 transaction() 自行管理 BEGIN/COMMIT
            self.conn = sqlite3.connect(self.db_path, check_same_thread=False, isolation_level=None)
            self.conn.row_factory = sqlite3.Row
            self._is_connected = True
            self.logger.info(f"成功连接到数据库: {self.db_path}")

            self._configure_database()

            return self.conn

        except sqlite3.Error as e:
            self.logger.error(f"连接数据库失败: {str(e)}")
            raise ConnectionError(f"无法连接到数据库 {self.db_path}: {str(e)}")

    def close(self):
        if self.conn is not None:
            try:
                self.conn.close()
                self.logger.info("数据库连接已关闭")
            except sqlite3.Error as e:
                self.logger.error(f"关闭数据库连接时发生错误: {str(e)}")
            finally:
                self.conn = None
                self._is_connected = False

    def _configure_database(self):
        """
        配置SQLite优化参数
        """
        optimizations = [
            "PRAGMA foreign_keys = ON",        # 启用外键约束
            "PRAGMA journal_mode = WAL",       # 使用WAL模式提高并发性能
            "PRAGMA synchronous = NORMAL",     # 平衡性能和安全性
            "PRAGMA busy_timeout = 5000",      # 写锁等待5秒
            "PRAGMA temp_store = MEMORY"       # 临时表存储在内存中
        ]

        for opt in optimizations:
            try:
                self.conn.execute(opt)
            except sqlite3.Error as e:
                self.logger.warning(f"配置数据库参数时出现警告: {opt}: {str(e)}")

        self.logger.debug("数据库优化参数配置完成")

    def is_connected(self) -> bool:
        return self._is_connected and self.conn is not None

    def ensure_connected(self):
        """
        确保数据库连接可用

        Raises:
            ConnectionError: 连接不可用时抛出异常
        """
        if not self.is_connected():
            raise ConnectionError("数据库未连接，请先调用connect()方法")

    @contextmanager
    def transaction(self):
        """
        事务上下文管理器

        已处于事务中时直接复用外层事务，由外层负责提交或回滚

        Usage:
            with db_manager.transaction() as conn:
                conn.execute("UPDATE ...")
        """
        self.ensure_connected()

        if self.conn.in_transaction:
            yield self.conn
            return

        transaction_id = datetime.now().strftime("%Y%m%d%H%M%S%f")
        self.conn.execute("BEGIN IMMEDIATE")
        self.logger.debug(f"事务 {transaction_id} 开始")
        try:
            yield self.conn
        except BaseException as e:
            self.logger.debug(f"事务 {transaction_id} 执行失败，回滚: {type(e).__name__}: {e}")
            try:
                self.conn.execute("ROLLBACK")
            except sqlite3.Error as rollback_error:
                self.logger.error(f"事务 {transaction_id} 回滚失败: {str(rollback_error)}")
            raise
        else:
            self.conn.execute("COMMIT")
            self.logger.debug(f"事务 {transaction_id} 提交成功")

    def execute_transaction(self, operations: List[Callable]) -> List[Any]:
        """
        串行执行事务操作

        Args:
            operations: 操作函数列表，每个函数返回操作结果

        Returns:
            所有操作结果的列表

        Raises:
            ConnectionError: 数据库未连接
            Exception: 事务执行失败时回滚并抛出原始异常
        """
        self.ensure_connected()

        if not operations:
            self.logger.warning("事务操作列表为空")
            return []

        results = []
        with self.transaction():
            for operation in operations:
                results.append(operation())
        return results

    def execute_single(self, query: str, params: Optional[List] = None) -> sqlite3.Cursor:
        """
        执行单个SQL语句（自动提交模式下立即生效）

        Args:
            query: SQL语句
            params: 查询参数

        Returns:
            游标
        """
        self.ensure_connected()

        try:
            return self.conn.execute(query, params or [])
        except sqlite3.Error as e:
            self.logger.error(f"执行SQL查询失败: {query[:100]}..., 错误: {str(e)}")
            raise

    def get_table_info(self, table_name: str) -> Dict[str, Any]:
        """
        获取数据表信息

        Args:
            table_name: 表名

        Returns:
            表信息字典
        """
        self.ensure_connected()

        columns_result = self.conn.execute(f"PRAGMA table_info('{table_name}')").fetchall()
        if not columns_result:
            raise ValueError(f"表 {table_name} 不存在")

        columns = []
        for col in columns_result:
            columns.append({
                'name': col[1],
                'type': col[2],
                'not_null': bool(col[3]),
                'default_value': col[4],
                'primary_key': bool(col[5])
            })

        count_result = self.conn.execute(f"SELECT COUNT(*) FROM {table_name}").fetchone()
        record_count = count_result[0] if count_result else 0

        return {
            'table_name': table_name,
            'columns': columns,
            'record_count': record_count
        }

    def check_integrity(self):
        """
        检查数据库完整性：核心表存在、库存非负、幂等标记与支付状态一致

        Raises:
            RuntimeError: 发现问题
        """
        self.ensure_connected()

        self.logger.info("开始数据库完整性检查")

        for table in CORE_TABLES:
            result = self.conn.execute("""
                SELECT COUNT(*) FROM sqlite_master
                WHERE type='table' AND name=?
            """, (table,)).fetchone()

            if not result or result[0] == 0:
                raise RuntimeError(f"核心表 {table} 不存在")

        integrity_issues = []

        negative_stock = self.conn.execute("""
            SELECT product_id, inventory FROM products WHERE inventory < 0
        """).fetchall()
        integrity_issues.extend(
            [f"products表库存为负: {row[0]} ({row[1]})" for row in negative_stock]
        )

        # 已扣减库存的记录必须已付款
        orphan_deductions = self.conn.execute("""
            SELECT id FROM user_items
            WHERE inventory_deducted = 1 AND payment_status NOT IN ('completed', 'refund_pending')
        """).fetchall()
        integrity_issues.extend(
            [f"user_items记录 {row[0]} 已扣减库存但未付款" for row in orphan_deductions]
        )

        if integrity_issues:
            error_msg = "数据库完整性检查发现问题:\n" + "\n".join(integrity_issues)
            self.logger.error(error_msg)
            raise RuntimeError(error_msg)

        self.logger.info("数据库完整性检查通过")

    def __enter__(self):
        if not self.is_connected():
            self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def __del__(self):
        if self.is_connected():
            self.close()
