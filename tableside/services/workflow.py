"""Status rules for orders and order items.

Each restaurant declares its order flow (a subsequence of the canonical
statuses that starts at ``received``). Items follow the same flow minus the
order-only statuses such as ``paid``. ``cancelled`` is reachable from every
non-terminal status.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Optional, Sequence, Tuple

from tableside.core.errors import InvalidTransition, ValidationError
from tableside.models.restaurant import DEFAULT_ORDER_FLOW

logger = logging.getLogger(__name__)

CANCELLED = "cancelled"
ORDER_STATUSES: Tuple[str, ...] = ("received", "preparing", "ready", "served", "paid", CANCELLED)
ITEM_STATUSES: Tuple[str, ...] = ("received", "preparing", "ready", "served", CANCELLED)

_CANONICAL_RANK = {status: index for index, status in enumerate(ORDER_STATUSES)}


def normalize_status(value: str | None) -> str:
    return (value or "").strip().lower()


@dataclass(frozen=True)
class WorkflowPolicy:
    order_flow: Tuple[str, ...]
    has_kitchen_view: bool = True
    allow_status_skip: bool = False

    @property
    def item_flow(self) -> Tuple[str, ...]:
        return tuple(status for status in self.order_flow if status in ITEM_STATUSES)

    def to_settings(self) -> dict[str, Any]:
        return {
            "order_flow": list(self.order_flow),
            "has_kitchen_view": self.has_kitchen_view,
            "allow_status_skip": self.allow_status_skip,
        }


def _next_in_flow(flow: Sequence[str], current: str) -> Optional[str]:
    current_rank = _CANONICAL_RANK[current]
    for status in flow:
        if _CANONICAL_RANK[status] > current_rank:
            return status
    return None


class WorkflowEngine:
    """Stateless validator; one instance is shared by the ledger and the restaurant service."""

    def parse_settings(self, settings: Mapping[str, Any] | None) -> WorkflowPolicy:
        settings = dict(settings or {})
        raw_flow = settings.get("order_flow")
        if raw_flow is None:
            raw_flow = list(DEFAULT_ORDER_FLOW)
        if not isinstance(raw_flow, (list, tuple)) or not raw_flow:
            raise ValidationError("order_flow must be a non-empty list of statuses")

        flow = [normalize_status(status) for status in raw_flow]
        unknown = [status for status in flow if status not in _CANONICAL_RANK or status == CANCELLED]
        if unknown:
            raise ValidationError(f"Unknown workflow statuses: {', '.join(unknown)}")
        if len(set(flow)) != len(flow):
            raise ValidationError("order_flow must not repeat statuses")
        if flow[0] != "received":
            raise ValidationError("order_flow must start with 'received'")
        ranks = [_CANONICAL_RANK[status] for status in flow]
        if ranks != sorted(ranks):
            raise ValidationError("order_flow must follow received, preparing, ready, served, paid")

        return WorkflowPolicy(
            order_flow=tuple(flow),
            has_kitchen_view=bool(settings.get("has_kitchen_view", True)),
            allow_status_skip=bool(settings.get("allow_status_skip", False)),
        )

    def policy_for(self, restaurant) -> WorkflowPolicy:
        return self.parse_settings(getattr(restaurant, "workflow_settings", None))

    def is_order_terminal(self, policy: WorkflowPolicy, status: str) -> bool:
        return status == CANCELLED or _next_in_flow(policy.order_flow, status) is None

    def is_item_terminal(self, policy: WorkflowPolicy, status: str) -> bool:
        return status == CANCELLED or _next_in_flow(policy.item_flow, status) is None

    def check_order_transition(
        self,
        policy: WorkflowPolicy,
        current: str,
        target: str,
        item_statuses: Iterable[str] = (),
    ) -> bool:
        """Return False for a same-status no-op, True for a valid move; raise otherwise.

        With a kitchen view the kitchen drives items, so the order may not get
        ahead of them. Without one, the ledger carries items along instead
        (see ``item_target_for_order``).
        """
        target = self._known(target, ORDER_STATUSES)
        if not self._check_move(policy.order_flow, policy.allow_status_skip, current, target, "order"):
            return False
        if target != CANCELLED and policy.has_kitchen_view:
            self._check_not_ahead_of_items(policy, target, item_statuses)
        return True

    def item_target_for_order(self, policy: WorkflowPolicy, order_status: str) -> Optional[str]:
        """Item status implied by an order status, for flows without a kitchen view."""
        if order_status == CANCELLED:
            return CANCELLED
        if order_status in ITEM_STATUSES:
            return order_status
        return policy.item_flow[-1] if policy.item_flow else None

    def lags_behind(self, item_status: str, target: str) -> bool:
        return item_status != CANCELLED and _CANONICAL_RANK[item_status] < _CANONICAL_RANK[target]

    def check_item_transition(self, policy: WorkflowPolicy, current: str, target: str, order_status: str) -> bool:
        target = self._known(target, ITEM_STATUSES)
        if current != target and self.is_order_terminal(policy, order_status):
            raise InvalidTransition(f"Order is already {order_status}; its items cannot change")
        return self._check_move(policy.item_flow, policy.allow_status_skip, current, target, "item")

    def aggregate_order_status(
        self,
        policy: WorkflowPolicy,
        order_status: str,
        item_statuses: Iterable[str],
    ) -> Optional[str]:
        """Status the order must take after an item change, or None when it stays put."""
        if self.is_order_terminal(policy, order_status):
            return None
        live = [status for status in item_statuses if status != CANCELLED]
        if not live:
            return CANCELLED
        slowest = min(live, key=_CANONICAL_RANK.__getitem__)
        if order_status in ITEM_STATUSES and _CANONICAL_RANK[order_status] < _CANONICAL_RANK[slowest]:
            return slowest
        return None

    def _known(self, status: str, allowed: Sequence[str]) -> str:
        normalized = normalize_status(status)
        if normalized not in allowed:
            raise ValidationError(f"Unknown status '{status}'")
        return normalized

    def _check_move(self, flow: Sequence[str], allow_skip: bool, current: str, target: str, label: str) -> bool:
        if current == target:
            return False
        next_status = _next_in_flow(flow, current) if current != CANCELLED else None
        if current == CANCELLED or next_status is None:
            raise InvalidTransition(f"The {label} is already {current}")
        if target == CANCELLED:
            return True
        if target not in flow:
            raise InvalidTransition(f"Status '{target}' is not part of this restaurant's workflow")
        if _CANONICAL_RANK[target] < _CANONICAL_RANK[current]:
            raise InvalidTransition(f"Cannot move {label} back from {current} to {target}")
        if not allow_skip and target != next_status:
            raise InvalidTransition(f"Cannot skip from {current} to {target}; next status is {next_status}")
        return True

    def _check_not_ahead_of_items(self, policy: WorkflowPolicy, target: str, item_statuses: Iterable[str]) -> None:
        live = [status for status in item_statuses if status != CANCELLED]
        if not live:
            return
        slowest = min(live, key=_CANONICAL_RANK.__getitem__)
        if target in ITEM_STATUSES:
            ahead = _CANONICAL_RANK[target] > _CANONICAL_RANK[slowest]
        else:
            ahead = not self.is_item_terminal(policy, slowest)
        if ahead:
            logger.info("Order move blocked by items target=%s slowest_item=%s", target, slowest)
            raise InvalidTransition(f"Order cannot be {target} while an item is still {slowest}")
