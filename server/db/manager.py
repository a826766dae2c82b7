# 数据库连接和事务管理的核心组件

import sqlite3
import logging
import os
from datetime import datetime
from typing import List, Dict, Any, Callable
from contextlib import contextmanager

CORE_TABLES = ['users', 'vendors', 'products', 'orders', 'order_items', 'refund_requests']


class DatabaseManager:
    """
    数据库管理器

    负责SQLite连接管理、事务处理和基础操作。
    连接使用自动提交模式，所有写事务由 transaction() 显式以
    BEGIN IMMEDIATE 开启，锁等待时间由 busy_timeout 限定。
    """

    def __init__(self, db_path: str, auto_connect: bool = False, busy_timeout: float = 5.0):
        """
        初始化数据库管理器

        Args:
            db_path: 数据库文件路径
            auto_connect: 是否自动连接数据库
            busy_timeout: 等待写锁的最长秒数
        """
        self.db_path = db_path
        self.busy_timeout = busy_timeout
        self.conn = None
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

            db_dir = os.path.dirname(self.db_path)
            if self.db_path != ':memory:' and db_dir and not os.path.exists(db_dir):
                os.makedirs(db_dir, exist_ok=True)
                self.logger.info(f"创建数据库目录: {db_dir}")

            self.conn = sqlite3.connect(
                self.db_path,
                timeout=self.busy_timeout,
                isolation_level=None,
                check_same_thread=False
            )
            self.conn.row_factory = sqlite3.Row
            self._is_connected = True
            self.logger.debug(f"成功连接到数据库: {self.db_path}")

            self._configure_database()

            return self.conn

        except sqlite3.Error as e:
            self.logger.error(f"连接数据库失败: {str(e)}")
            raise ConnectionError(f"无法连接到数据库 {self.db_path}: {str(e)}")

    def close(self):
        """
        关闭数据库连接
        """
        if self.conn is not None:
            try:
                self.conn.close()
                self.logger.debug("数据库连接已关闭")
            except sqlite3.Error as e:
                self.logger.error(f"关闭数据库连接时发生错误: {str(e)}")
            finally:
                self.conn = None
                self._is_connected = False

    def _configure_database(self):
        """
        配置SQLite参数
        """
        optimizations = [
            "PRAGMA foreign_keys = ON",
            f"PRAGMA busy_timeout = {int(self.busy_timeout * 1000)}",
            "PRAGMA synchronous = NORMAL",
            "PRAGMA temp_store = MEMORY"
        ]
        if self.db_path != ':memory:':
            optimizations.append("PRAGMA journal_mode = WAL")

        for opt in optimizations:
            try:
                self.conn.execute(opt)
            except sqlite3.Error as e:
                self.logger.warning(f"配置数据库参数 {opt} 时出现警告: {str(e)}")

    def is_connected(self) -> bool:
        """
        检查数据库连接状态
        """
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
        写事务上下文管理器

        已处于事务中时直接复用外层事务，由外层负责提交或回滚。

        Usage:
            with db_manager.transaction() as conn:
                conn.execute("INSERT ...")
                conn.execute("UPDATE ...")
        """
        self.ensure_connected()

        if self.conn.in_transaction:
            yield self.conn
            return

        self.conn.execute("BEGIN IMMEDIATE")
        try:
            yield self.conn
            self.conn.execute("COMMIT")
        except BaseException as e:
            self.logger.debug(f"事务执行失败，回滚: {str(e)}")
            try:
                self.conn.execute("ROLLBACK")
            except sqlite3.Error as rollback_error:
                self.logger.error(f"事务回滚失败: {str(rollback_error)}")
            raise

    def execute_transaction(self, operations: List[Callable]) -> List[Any]:
        """
        在同一事务中串行执行操作

        Args:
            operations: 操作函数列表，每个函数返回操作结果

        Returns:
            所有操作结果的列表
        """
        if not operations:
            self.logger.warning("事务操作列表为空")
            return []

        transaction_id = datetime.now().strftime("%Y%m%d%H%M%S%f")
        self.logger.debug(f"开始事务 {transaction_id}，包含 {len(operations)} 个操作")

        with self.transaction():
            results = [operation() for operation in operations]

        self.logger.debug(f"事务 {transaction_id} 提交成功")
        return results

    def execute_single(self, query: str, params: List = None) -> sqlite3.Cursor:
        """
        执行单个SQL语句（自动提交）

        Args:
            query: SQL查询语句
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

        columns = [{
            'name': col[1],
            'type': col[2],
            'not_null': bool(col[3]),
            'default_value': col[4],
            'primary_key': bool(col[5])
        } for col in columns_result]

        record_count = self.conn.execute(f"SELECT COUNT(*) FROM {table_name}").fetchone()[0]

        return {
            'table_name': table_name,
            'columns': columns,
            'record_count': record_count
        }

    def check_integrity(self):
        """
        检查核心表存在以及外键完整性

        Raises:
            RuntimeError: 发现问题时抛出
        """
        self.ensure_connected()

        for table in CORE_TABLES:
            exists = self.conn.execute(
                "SELECT COUNT(*) FROM sqlite_master WHERE type='table' AND name=?",
                (table,)
            ).fetchone()[0]
            if not exists:
                raise RuntimeError(f"核心表 {table} 不存在")

        violations = self.conn.execute("PRAGMA foreign_key_check").fetchall()
        if violations:
            details = [f"{row[0]} rowid={row[1]} -> {row[2]}" for row in violations]
            raise RuntimeError("外键完整性检查发现问题:\n" + "\n".join(details))

        self.logger.info("数据库完整性检查通过")

    def perform_maintenance(self):
        """
        执行数据库维护：清理压缩、更新统计信息、完整性检查
        """
        self.ensure_connected()

        self.logger.info("开始数据库维护操作")
        self.conn.execute("VACUUM")
        self.conn.execute("ANALYZE")
        self.check_integrity()
        self.logger.info("数据库维护操作全部完成")

    def __enter__(self):
        if not self.is_connected():
            self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def __del__(self):
        if self.is_connected():
            self.close()
