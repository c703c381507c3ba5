from __future__ import annotations

from dataclasses import dataclass
from random import Random
from typing import Optional

from tableside.core import config
from tableside.services.authorization_service import AuthorizationService
from tableside.services.event_bus import EventBus
from tableside.services.join_codes import JoinCodeGenerator
from tableside.services.order_events import register_default_handlers
from tableside.services.order_ledger import OrderLedger
from tableside.services.participants import ParticipantRegistry
from tableside.services.restaurants import RestaurantService
from tableside.services.table_sessions import TableSessionManager
from tableside.services.workflow import WorkflowEngine


@dataclass
class ServiceContainer:
    authorization: AuthorizationService
    events: EventBus
    workflow: WorkflowEngine
    join_codes: JoinCodeGenerator
    participants: ParticipantRegistry
    sessions: TableSessionManager
    orders: OrderLedger
    restaurants: RestaurantService

    @classmethod
    def build(
        cls,
        *,
        join_code_length: int = config.JOIN_CODE_LENGTH,
        join_code_alphabet: str = config.JOIN_CODE_ALPHABET,
        join_code_max_attempts: int = config.JOIN_CODE_MAX_ATTEMPTS,
        allow_idempotent_rejoin: bool = config.ALLOW_IDEMPOTENT_REJOIN,
        compensation_attempts: int = config.COMPENSATION_MAX_ATTEMPTS,
        rng: Optional[Random] = None,
        events: Optional[EventBus] = None,
    ) -> "ServiceContainer":
        authorization = AuthorizationService()
        workflow = WorkflowEngine()
        if events is None:
            events = EventBus()
            register_default_handlers(events)
        join_codes = JoinCodeGenerator(
            length=join_code_length,
            alphabet=join_code_alphabet,
            max_attempts=join_code_max_attempts,
            rng=rng,
        )
        participants = ParticipantRegistry(authorization)
        return cls(
            authorization=authorization,
            events=events,
            workflow=workflow,
            join_codes=join_codes,
            participants=participants,
            sessions=TableSessionManager(
                join_codes=join_codes,
                participants=participants,
                authorization=authorization,
                allow_idempotent_rejoin=allow_idempotent_rejoin,
            ),
            orders=OrderLedger(
                participants=participants,
                workflow=workflow,
                authorization=authorization,
                events=events,
            ),
            restaurants=RestaurantService(
                authorization=authorization,
                workflow=workflow,
                compensation_attempts=compensation_attempts,
            ),
        )
