# 订单状态机

from typing import Dict, FrozenSet
from utils.errors import InvalidTransitionError

PENDING = 'pending'
PROCESSING = 'processing'
SHIPPED = 'shipped'
DELIVERED = 'delivered'
CANCELLED = 'cancelled'
REFUND_REQUESTED = 'refund_requested'
REFUNDED = 'refunded'

# 邻接表：未列出的迁移一律非法
ALLOWED_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    PENDING: frozenset({PROCESSING, CANCELLED, REFUND_REQUESTED}),
    PROCESSING: frozenset({SHIPPED, CANCELLED, REFUND_REQUESTED}),
    SHIPPED: frozenset({DELIVERED, REFUND_REQUESTED}),
    # 驳回退款时回到申请前的状态
    REFUND_REQUESTED: frozenset({REFUNDED, PENDING, PROCESSING, SHIPPED}),
    DELIVERED: frozenset(),
    CANCELLED: frozenset(),
    REFUNDED: frozenset(),
}

TERMINAL_STATES = frozenset(s for s, targets in ALLOWED_TRANSITIONS.items() if not targets)

# 可以发起退款的订单状态
REFUNDABLE_STATES = frozenset({PENDING, PROCESSING, SHIPPED})

# 未付款订单可直接取消的状态
CANCELLABLE_STATES = frozenset({PENDING, PROCESSING})

# 商家推进履约时允许设置的目标状态
FULFILLMENT_TARGETS = frozenset({PROCESSING, SHIPPED, DELIVERED})

# 公开物流时间线中展示的事件
TRACKING_ACTIONS = frozenset({'created', PROCESSING, SHIPPED, DELIVERED, CANCELLED})


def can_transition(current: str, target: str) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def ensure_transition(current: str, target: str):
    """
    校验状态迁移

    Raises:
        InvalidTransitionError: 邻接表中不存在该迁移
    """
    if not can_transition(current, target):
        raise InvalidTransitionError(
            f"非法的订单状态迁移: {current} -> {target}",
            params={'current': current, 'target': target}
        )


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATES
