# 周边支持业务操作，包括用户注册、登录、商家和商品维护等辅助功能

import logging
import sqlite3
from typing import Optional, Dict, Any
from .manager import DatabaseManager
from utils.errors import ValidationError, NotFoundError
from utils.security import hash_password, verify_password
from utils.validators import (
    validate_email, validate_string_length, validate_non_negative_integer
)

logger = logging.getLogger(__name__)

USER_ROLES = ('customer', 'vendor', 'admin')


class SupportingOperations:
    """
    周边支持业务操作类
    """
    def __init__(self, db_manager: DatabaseManager):
        self.db = db_manager

    def _user_from_row(self, row) -> Dict[str, Any]:
        return {
            'user_id': row['user_id'],
            'email': row['email'],
            'name': row['name'],
            'role': row['role'],
            'status': row['status'],
            'created_at': row['created_at'],
            'last_login_at': row['last_login_at']
        }

    def register_user(self, email: str, password: Optional[str] = None, name: str = None,
                      role: str = 'customer') -> Dict[str, Any]:
        """
        注册新用户

        Args:
            email: 登录邮箱（不区分大小写）
            password: 明文密码，为空时该账户无法用密码登录
            name: 显示名称
            role: customer / vendor / admin

        Returns:
            用户信息
        """
        if not validate_email(email):
            raise ValidationError(f"邮箱格式错误: {email}")
        if role not in USER_ROLES:
            raise ValidationError(f"未知的用户角色: {role}")
        if name and not validate_string_length(name, max_length=100):
            raise ValidationError("用户名长度不能超过100字符")

        email = email.strip().lower()
        password_hash = hash_password(password) if password else None

        def register_user_operation():
            existing = self.db.conn.execute(
                "SELECT user_id FROM users WHERE email = ?", [email]
            ).fetchone()
            if existing:
                raise ValidationError(f"邮箱 {email} 已注册")

            cursor = self.db.conn.execute("""
                INSERT INTO users (email, name, password_hash, role, status, created_at, updated_at)
                VALUES (?, ?, ?, ?, 'active', CURRENT_TIMESTAMP, CURRENT_TIMESTAMP)
            """, [email, name, password_hash, role])
            return cursor.lastrowid

        user_id = self.db.execute_transaction([register_user_operation])[0]
        logger.info(f"注册用户 {user_id} ({role})")
        return self.get_user_by_id(user_id)

    def authenticate(self, email: str, password: str) -> Optional[Dict[str, Any]]:
        """
        邮箱密码登录

        Returns:
            用户信息，邮箱不存在、密码错误或账户停用时返回None
        """
        if not email or not password:
            return None

        row = self.db.conn.execute(
            "SELECT * FROM users WHERE email = ?", [email.strip().lower()]
        ).fetchone()

        if not row or row['status'] != 'active':
            return None

        if not verify_password(password, row['password_hash']):
            return None

        self.db.execute_single(
            "UPDATE users SET last_login_at = CURRENT_TIMESTAMP WHERE user_id = ?",
            [row['user_id']]
        )
        return self.get_user_by_id(row['user_id'])

    def get_user_by_id(self, user_id: int) -> Optional[Dict[str, Any]]:
        """获取用户信息（含商家ID）"""
        row = self.db.conn.execute(
            "SELECT * FROM users WHERE user_id = ?", [user_id]
        ).fetchone()
        if not row:
            return None

        user = self._user_from_row(row)
        vendor = self.get_vendor_by_user(user_id)
        user['vendor_id'] = vendor['vendor_id'] if vendor else None
        return user

    def create_vendor(self, user_id: int, business_name: str, email: str = None) -> Dict[str, Any]:
        """
        为用户开通商家身份

        Args:
            user_id: 商家账户对应的用户
            business_name: 店铺名称
            email: 通知邮箱，默认使用账户邮箱
        """
        if not validate_string_length(business_name, min_length=1, max_length=200):
            raise ValidationError("店铺名称不能为空且不超过200字符")

        def create_vendor_operation():
            user = self.db.conn.execute(
                "SELECT email, role FROM users WHERE user_id = ?", [user_id]
            ).fetchone()
            if not user:
                raise NotFoundError(f"用户ID {user_id} 不存在")

            try:
                cursor = self.db.conn.execute("""
                    INSERT INTO vendors (user_id, business_name, email, balance_cents, is_active, created_at)
                    VALUES (?, ?, ?, 0, 1, CURRENT_TIMESTAMP)
                """, [user_id, business_name.strip(), (email or user['email']).lower()])
            except sqlite3.IntegrityError:
                raise ValidationError(f"用户 {user_id} 已是商家")

            if user['role'] == 'customer':
                self.db.conn.execute(
                    "UPDATE users SET role = 'vendor', updated_at = CURRENT_TIMESTAMP WHERE user_id = ?",
                    [user_id]
                )
            return cursor.lastrowid

        vendor_id = self.db.execute_transaction([create_vendor_operation])[0]
        logger.info(f"用户 {user_id} 开通商家 {vendor_id}")
        return self.get_vendor(vendor_id)

    def get_vendor(self, vendor_id: int) -> Optional[Dict[str, Any]]:
        row = self.db.conn.execute(
            "SELECT * FROM vendors WHERE vendor_id = ?", [vendor_id]
        ).fetchone()
        return dict(row) if row else None

    def get_vendor_by_user(self, user_id: int) -> Optional[Dict[str, Any]]:
        row = self.db.conn.execute(
            "SELECT * FROM vendors WHERE user_id = ?", [user_id]
        ).fetchone()
        return dict(row) if row else None

    def create_product(self, vendor_id: int, name: str, price_cents: int, stock: int = 0) -> Dict[str, Any]:
        """
        商家上架商品

        Args:
            vendor_id: 商家ID
            name: 商品名称
            price_cents: 当前售价（分）
            stock: 库存数量
        """
        if not validate_string_length(name, min_length=1, max_length=200):
            raise ValidationError("商品名称不能为空且不超过200字符")
        if not validate_non_negative_integer(price_cents):
            raise ValidationError("商品价格必须为非负整数（分）")
        if not validate_non_negative_integer(stock):
            raise ValidationError("库存必须为非负整数")

        if not self.get_vendor(vendor_id):
            raise NotFoundError(f"商家ID {vendor_id} 不存在")

        cursor = self.db.execute_single("""
            INSERT INTO products (vendor_id, name, price_cents, stock, is_active, created_at, updated_at)
            VALUES (?, ?, ?, ?, 1, CURRENT_TIMESTAMP, CURRENT_TIMESTAMP)
        """, [vendor_id, name.strip(), int(price_cents), int(stock)])
        return self.get_product(cursor.lastrowid)

    def get_product(self, product_id: int) -> Optional[Dict[str, Any]]:
        row = self.db.conn.execute(
            "SELECT * FROM products WHERE product_id = ?", [product_id]
        ).fetchone()
        return dict(row) if row else None

    def set_product_stock(self, product_id: int, stock: int) -> Dict[str, Any]:
        """直接设置库存（补货/盘点）"""
        if not validate_non_negative_integer(stock):
            raise ValidationError("库存必须为非负整数")

        cursor = self.db.execute_single(
            "UPDATE products SET stock = ?, updated_at = CURRENT_TIMESTAMP WHERE product_id = ?",
            [int(stock), product_id]
        )
        if cursor.rowcount == 0:
            raise NotFoundError(f"商品ID {product_id} 不存在")
        return self.get_product(product_id)
