# API测试共享配置和固定装置

import copy

import pytest
from fastapi.testclient import TestClient

from api.dependencies import build_services
from api.main import create_app
from utils.config import Config

CRON_SECRET = "test-cron-secret"


@pytest.fixture
def app_config(db_path):
    """测试配置，数据库指向本用例的临时文件"""
    config_dict = copy.deepcopy(Config(env="test").config)
    config_dict["database"]["path"] = db_path
    return Config.from_dict(config_dict, env="test")


@pytest.fixture
def app(app_config, test_db, gateway, notifier):
    """注入可编排网关和记录型通知器的应用"""
    services = build_services(app_config, payment_gateway=gateway, notifier=notifier)
    return create_app(services=services)


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def auth_headers(app):
    """为示例用户签发令牌"""
    def _auth_headers(user):
        token = app.state.services.jwt_manager.create_access_token({
            "user_id": user["user_id"],
            "role": user["role"]
        })
        return {"Authorization": f"Bearer {token}"}

    return _auth_headers


@pytest.fixture
def cron_headers():
    return {"Authorization": f"Bearer {CRON_SECRET}"}
