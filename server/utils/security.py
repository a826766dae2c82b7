# 安全工具（JWT、密码哈希、共享密钥校验）

import hmac
import jwt
from datetime import datetime, timedelta, timezone
from typing import Dict, Any, Optional
from passlib.context import CryptContext


class JWTManager:
    """
    JWT令牌管理器
    """

    def __init__(self, secret_key: str, algorithm: str = "HS256",
                 access_token_expire_minutes: int = 1440):
        self.secret_key = secret_key
        self.algorithm = algorithm
        self.access_token_expire_minutes = access_token_expire_minutes

    def create_access_token(self, data: Dict[str, Any]) -> str:
        """
        创建访问令牌

        Args:
            data: 要编码的数据（user_id, role等）

        Returns:
            JWT令牌字符串
        """
        to_encode = data.copy()

        now = datetime.now(timezone.utc)
        expire = now + timedelta(minutes=self.access_token_expire_minutes)
        to_encode.update({"exp": expire, "iat": now})

        return jwt.encode(to_encode, self.secret_key, algorithm=self.algorithm)

    def verify_token(self, token: str) -> Optional[Dict[str, Any]]:
        """
        验证JWT令牌

        Args:
            token: JWT令牌字符串

        Returns:
            解码后的数据，验证失败（过期或无效）返回None
        """
        try:
            return jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except jwt.ExpiredSignatureError:
            return None
        except jwt.InvalidTokenError:
            return None


# 纯Python实现的PBKDF2，不依赖bcrypt扩展
pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def hash_password(password: str) -> str:
    """
    哈希密码

    Args:
        password: 明文密码

    Returns:
        哈希后的密码
    """
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """
    验证密码

    Args:
        plain_password: 明文密码
        hashed_password: 哈希密码

    Returns:
        验证结果
    """
    if not hashed_password:
        return False
    return pwd_context.verify(plain_password, hashed_password)


def verify_shared_secret(provided: Optional[str], expected: Optional[str]) -> bool:
    """
    定时任务共享密钥校验，要求完全相等

    Args:
        provided: 请求携带的密钥
        expected: 配置中的密钥

    Returns:
        是否匹配；任一方为空时返回False
    """
    if not provided or not expected:
        return False
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))
