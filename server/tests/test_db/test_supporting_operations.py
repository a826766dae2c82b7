# 周边支持业务操作测试

import pytest

from utils.errors import ValidationError, NotFoundError


class TestUserAccounts:
    """用户注册和登录测试"""

    def test_register_and_authenticate(self, support_ops):
        """测试注册后可以用邮箱密码登录（邮箱不区分大小写）"""
        user = support_ops.register_user("Ana@Example.com", "secreto", name="Ana")

        assert user["email"] == "ana@example.com"
        assert user["role"] == "customer"
        assert user["vendor_id"] is None

        logged_in = support_ops.authenticate("ANA@example.com", "secreto")
        assert logged_in["user_id"] == user["user_id"]
        assert logged_in["last_login_at"] is not None

    def test_wrong_password(self, support_ops):
        """测试密码错误或账户不存在"""
        support_ops.register_user("ana@example.com", "secreto")

        assert support_ops.authenticate("ana@example.com", "otro") is None
        assert support_ops.authenticate("nadie@example.com", "secreto") is None
        assert support_ops.authenticate("ana@example.com", "") is None

    def test_account_without_password(self, support_ops):
        """测试没有密码的账户不能用密码登录"""
        support_ops.register_user("sinclave@example.com")

        assert support_ops.authenticate("sinclave@example.com", "cualquiera") is None

    def test_suspended_account(self, support_ops, test_db):
        """测试停用账户不能登录"""
        user = support_ops.register_user("ana@example.com", "secreto")
        test_db.execute_single("UPDATE users SET status = 'suspended' WHERE user_id = ?", [user["user_id"]])

        assert support_ops.authenticate("ana@example.com", "secreto") is None

    def test_password_is_hashed(self, support_ops, test_db):
        """测试不保存明文密码"""
        user = support_ops.register_user("ana@example.com", "secreto")
        row = test_db.execute_single(
            "SELECT password_hash FROM users WHERE user_id = ?", [user["user_id"]]
        ).fetchone()

        assert row["password_hash"] != "secreto"

    def test_duplicate_email(self, support_ops):
        """测试邮箱重复"""
        support_ops.register_user("ana@example.com", "secreto")

        with pytest.raises(ValidationError):
            support_ops.register_user("ANA@example.com", "otro")

    @pytest.mark.parametrize("email,role", [
        ("no-es-email", "customer"),
        ("ana@example.com", "superuser"),
    ])
    def test_invalid_registration(self, support_ops, email, role):
        """测试邮箱和角色校验"""
        with pytest.raises(ValidationError):
            support_ops.register_user(email, "secreto", role=role)

    def test_get_missing_user(self, support_ops):
        """测试获取不存在的用户"""
        assert support_ops.get_user_by_id(99999) is None


class TestVendorsAndProducts:
    """商家和商品测试"""

    def test_create_vendor_promotes_customer(self, support_ops):
        """测试开通商家后用户角色变为商家"""
        user = support_ops.register_user("flores@example.com", "secreto")
        vendor = support_ops.create_vendor(user["user_id"], "Flores del Valle")

        assert vendor["email"] == "flores@example.com"
        assert vendor["balance_cents"] == 0

        refreshed = support_ops.get_user_by_id(user["user_id"])
        assert refreshed["role"] == "vendor"
        assert refreshed["vendor_id"] == vendor["vendor_id"]

    def test_one_vendor_per_user(self, support_ops):
        """测试同一用户不能开通两个商家"""
        user = support_ops.register_user("flores@example.com", "secreto")
        support_ops.create_vendor(user["user_id"], "Flores")

        with pytest.raises(ValidationError):
            support_ops.create_vendor(user["user_id"], "Flores 2")

    def test_vendor_requires_user(self, support_ops):
        """测试用户不存在"""
        with pytest.raises(NotFoundError):
            support_ops.create_vendor(99999, "Fantasma")

    def test_products(self, support_ops, market):
        """测试上架商品和调整库存"""
        product = support_ops.create_product(market.vendor_id, "Orquídea", 70000, 4)
        assert product["price_cents"] == 70000
        assert product["stock"] == 4

        updated = support_ops.set_product_stock(product["product_id"], 12)
        assert updated["stock"] == 12

        with pytest.raises(ValidationError):
            support_ops.set_product_stock(product["product_id"], -1)
        with pytest.raises(NotFoundError):
            support_ops.set_product_stock(99999, 1)
        with pytest.raises(NotFoundError):
            support_ops.create_product(99999, "Nada", 100)
        with pytest.raises(ValidationError):
            support_ops.create_product(market.vendor_id, "Gratis", -5)
