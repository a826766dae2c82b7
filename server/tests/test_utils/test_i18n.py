# 本地化测试

from utils.i18n import MESSAGES, resolve_locale, translate
from utils.errors import (
    MarketError, NotFoundError, UnauthorizedError, ForbiddenError, ValidationError,
    InvalidTransitionError, AlreadyRequestedError, AlreadyDecidedError, NotEligibleError,
    GatewayError
)


class TestResolveLocale:
    """Accept-Language 解析测试"""

    def test_default_when_missing(self):
        assert resolve_locale(None) == "es"
        assert resolve_locale("") == "es"
        assert resolve_locale(None, default="en") == "en"

    def test_region_and_quality(self):
        """测试地区后缀和权重"""
        assert resolve_locale("en-US,en;q=0.9") == "en"
        assert resolve_locale("fr-FR, zh-CN;q=0.8, en;q=0.5") == "zh"
        assert resolve_locale("de-DE,fr;q=0.7") == "es"

    def test_malformed_quality(self):
        """测试权重格式错误时排在最后"""
        assert resolve_locale("zh;q=abc, en;q=0.1") == "en"


class TestTranslate:
    """错误消息本地化测试"""

    def test_every_error_code_has_messages(self):
        """测试所有错误码在每种语言中都有消息"""
        error_types = [MarketError, NotFoundError, UnauthorizedError, ForbiddenError,
                       ValidationError, InvalidTransitionError, AlreadyRequestedError,
                       AlreadyDecidedError, NotEligibleError, GatewayError]
        codes = {error_type.code for error_type in error_types} | {"ORDER_NOT_FOUND"}

        for locale, catalog in MESSAGES.items():
            missing = codes - set(catalog)
            assert not missing, f"{locale} 缺少 {missing}"

    def test_params(self):
        """测试消息参数替换"""
        message = translate("INVALID_TRANSITION", "en", current="delivered", target="processing")
        assert message == "Cannot move order from delivered to processing"

    def test_missing_params_keep_template(self):
        assert "{current}" in translate("INVALID_TRANSITION", "es")

    def test_fallbacks(self):
        """测试未知语言和未知错误码的回退"""
        assert translate("ORDER_NOT_FOUND", "fr") == MESSAGES["es"]["ORDER_NOT_FOUND"]
        assert translate("SOMETHING_ELSE", "en") == MESSAGES["en"]["INTERNAL_ERROR"]
