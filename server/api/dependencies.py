# 进程级服务容器和请求级依赖注入

import logging
from dataclasses import dataclass
from typing import Dict, Any, Optional

from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from db.manager import DatabaseManager
from db.job_operations import JobOperations
from db.order_operations import OrderOperations
from db.refund_operations import RefundOperations
from db.supporting_operations import SupportingOperations
from services.notifier import Notifier, build_notifier
from services.payment_gateway import PaymentGateway, build_payment_gateway
from utils.config import Config
from utils.errors import UnauthorizedError, ForbiddenError
from utils.i18n import DEFAULT_LOCALE
from utils.security import JWTManager

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)


@dataclass
class AppServices:
    """
    应用生命周期内共享的服务，在 create_app 中创建一次

    数据库连接不在此共享，每个请求单独打开
    """
    config: Config
    jwt_manager: JWTManager
    payment_gateway: PaymentGateway
    notifier: Notifier
    db_path: str
    busy_timeout: float = 5.0
    default_locale: str = DEFAULT_LOCALE

    def open_database(self) -> DatabaseManager:
        return DatabaseManager(self.db_path, auto_connect=True, busy_timeout=self.busy_timeout)


def build_services(config: Config, payment_gateway: Optional[PaymentGateway] = None,
                   notifier: Optional[Notifier] = None) -> AppServices:
    """
    根据配置创建服务容器

    Args:
        config: 配置
        payment_gateway: 指定支付网关（测试注入），默认按配置创建
        notifier: 指定通知发送器（测试注入），默认按配置创建
    """
    db_config = config.get_database_config()
    jwt_manager = JWTManager(
        secret_key=config.get("auth.jwt_secret_key"),
        algorithm=config.get("auth.jwt_algorithm", "HS256"),
        access_token_expire_minutes=config.get("auth.access_token_expire_minutes", 1440)
    )

    return AppServices(
        config=config,
        jwt_manager=jwt_manager,
        payment_gateway=payment_gateway or build_payment_gateway(config),
        notifier=notifier or build_notifier(config),
        db_path=db_config["path"],
        busy_timeout=float(db_config["busy_timeout_seconds"]),
        default_locale=config.get("i18n.default_locale", DEFAULT_LOCALE)
    )


def get_services(request: Request) -> AppServices:
    return request.app.state.services


def get_database(services: AppServices = Depends(get_services)):
    """获取数据库连接（每个请求一个）"""
    db_manager = services.open_database()
    try:
        yield db_manager
    finally:
        db_manager.close()


def get_supporting_operations(db: DatabaseManager = Depends(get_database)) -> SupportingOperations:
    return SupportingOperations(db)


def get_order_operations(db: DatabaseManager = Depends(get_database),
                         services: AppServices = Depends(get_services)) -> OrderOperations:
    return OrderOperations(db, services.notifier)


def get_refund_operations(db: DatabaseManager = Depends(get_database),
                          services: AppServices = Depends(get_services)) -> RefundOperations:
    return RefundOperations(
        db,
        services.payment_gateway,
        services.notifier,
        claim_stale_seconds=float(services.config.get("payments.claim_stale_seconds", 300))
    )


def get_job_operations(db: DatabaseManager = Depends(get_database),
                       services: AppServices = Depends(get_services)) -> JobOperations:
    return JobOperations(
        db,
        services.notifier,
        low_stock_threshold=int(services.config.get("jobs.low_stock_threshold", 5))
    )


def get_optional_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    services: AppServices = Depends(get_services),
    support_ops: SupportingOperations = Depends(get_supporting_operations)
) -> Optional[Dict[str, Any]]:
    """
    获取当前用户；未携带令牌时返回None，令牌无效时报错
    """
    if credentials is None:
        return None

    payload = services.jwt_manager.verify_token(credentials.credentials)
    if not payload or "user_id" not in payload:
        raise UnauthorizedError("令牌无效或已过期")

    user = support_ops.get_user_by_id(payload["user_id"])
    if not user or user["status"] != "active":
        raise UnauthorizedError(f"用户 {payload['user_id']} 不存在或已停用")

    return user


def get_current_user(user: Optional[Dict[str, Any]] = Depends(get_optional_user)) -> Dict[str, Any]:
    """获取当前用户（必须登录）"""
    if user is None:
        raise UnauthorizedError("缺少访问令牌")
    return user


def get_vendor_or_admin_user(current_user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    """管理员，或已开通店铺的商家"""
    role = current_user["role"]
    if role == "admin" or (role == "vendor" and current_user.get("vendor_id")):
        return current_user
    raise ForbiddenError(f"用户 {current_user['user_id']} 不是商家或管理员")


def get_vendor_user(current_user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    """已开通店铺的商家"""
    if current_user["role"] != "vendor" or not current_user.get("vendor_id"):
        raise ForbiddenError(f"用户 {current_user['user_id']} 不是商家")
    return current_user


def get_admin_user(current_user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    """管理员"""
    if current_user["role"] != "admin":
        raise ForbiddenError(f"用户 {current_user['user_id']} 不是管理员")
    return current_user
