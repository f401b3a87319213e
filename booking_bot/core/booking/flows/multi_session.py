"""
Multi-session booking flow.

Immediate:  start date -> computed schedule -> confirm -> book all at once
Sequential: progress check (blocked while a session is upcoming)
            -> date for the next session -> confirm -> book it
Flexible:   progress check -> how many sessions -> one date per session,
            in order -> confirm -> book the batch

Every commit is one atomic batch. Paid services are booked as pending and
handed to the payment gate; the conversation then waits in
awaiting_payment.
"""

import logging
from dataclasses import replace
from datetime import datetime
from enum import Enum
from typing import Optional
from zoneinfo import ZoneInfo

from booking_bot.core.payments import (
    PAYMENT_UNAVAILABLE,
    PaymentGate,
    get_payment_gate,
    payment_requirement_for,
)
from booking_bot.core.scheduling.engine import (
    MultiSessionSchedulingEngine,
    generate_progress_message,
    get_scheduling_engine,
)
from booking_bot.core.scheduling.types import (
    MultiSessionStrategy,
    ServiceConfig,
    SessionScheduleEntry,
)
from booking_bot.models.database import BookingStatus
from ..context import ConversationContext, MultiSessionStep
from ..errors import BookingPersistenceError, PaymentLinkError
from ..messages import (
    BOOKING_DECLINED,
    BOOKING_FAILED,
    PAST_DATETIME,
    UNPARSEABLE_DATETIME,
    invalid_session_count,
    plan_complete,
    schedule_preview,
    sequential_blocked,
    session_count_prompt,
    session_date_prompt,
    session_order_prompt,
    sessions_booked,
    start_date_prompt,
)
from ..policy import BookingPolicy
from ..repository import NewBookingBatch
from .base import (
    ActionType,
    BookingFlow,
    Fact,
    FlowAction,
    FlowHandler,
    FlowResult,
    TurnEvent,
    action,
)

logger = logging.getLogger(__name__)


class PlanStep(str, Enum):
    """Step names reported for a multi-session turn."""

    CHECK_PROGRESS = "check_progress"
    BLOCKED = "sequential_blocked"
    PLAN_COMPLETE = "plan_complete"
    DECLINED = "declined"
    COMMIT = "commit_sessions"


class MultiSessionFlow(BookingFlow):
    """
    Pure multi-session state machine.

    The stored `multi_session_step` is the source of truth; None means the
    plan was just chosen and has not been evaluated yet.
    """

    def __init__(
        self,
        tz: ZoneInfo,
        engine: Optional[MultiSessionSchedulingEngine] = None,
    ):
        self.tz = tz
        self.engine = engine if engine is not None else get_scheduling_engine()

    def needs(self, context: ConversationContext) -> Fact:
        step = context.multi_session_step
        strategy = context.multi_session_service.multi_session_strategy

        if step is None:
            if strategy == MultiSessionStrategy.IMMEDIATE:
                return Fact.NONE
            return Fact.PROGRESS
        if step == MultiSessionStep.CONFIRM_STRATEGY:
            return Fact.SESSION_COUNT
        if step == MultiSessionStep.COLLECT_DATES:
            return Fact.DATETIME
        if step == MultiSessionStep.CONFIRM_ALL:
            return Fact.CONFIRMATION
        return Fact.NONE

    def process(self, context: ConversationContext, event: TurnEvent) -> FlowAction:
        service = context.multi_session_service
        step = context.multi_session_step

        if step is None:
            return self._start(context, service, event)
        if step == MultiSessionStep.CONFIRM_STRATEGY:
            return self._choose_count(context, service, event)
        if step == MultiSessionStep.COLLECT_DATES:
            return self._collect_date(context, service, event)
        if step == MultiSessionStep.CONFIRM_ALL:
            return self._confirm(context, service, event)

        raise ValueError(f"Multi-session flow cannot handle step {step}")

    def _start(
        self,
        context: ConversationContext,
        service: ServiceConfig,
        event: TurnEvent,
    ) -> FlowAction:
        strategy = service.multi_session_strategy

        if strategy == MultiSessionStrategy.IMMEDIATE:
            context.first_session_number = 1
            context.sessions_to_book = service.total_sessions_required
            context.multi_session_step = MultiSessionStep.COLLECT_DATES
            return action(ActionType.CONTINUE, PlanStep.CHECK_PROGRESS)

        progress = event.progress
        total = max(progress.total_sessions, service.total_sessions_required)
        if total != service.total_sessions_required:
            context.multi_session_service = service = replace(
                service, total_sessions_required=total
            )

        if progress.is_complete:
            return action(
                ActionType.FINISH,
                PlanStep.PLAN_COMPLETE,
                plan_complete(generate_progress_message(progress)),
            )

        if strategy == MultiSessionStrategy.SEQUENTIAL:
            if progress.upcoming_sessions > 0:
                # Session N+1 is only offered once session N is completed
                return action(
                    ActionType.FINISH,
                    PlanStep.BLOCKED,
                    sequential_blocked(generate_progress_message(progress)),
                )
            context.first_session_number = progress.booked_sessions + 1
            context.sessions_to_book = 1
            context.session_group_id = progress.session_group_id
            context.multi_session_step = MultiSessionStep.COLLECT_DATES
            return action(ActionType.CONTINUE, PlanStep.CHECK_PROGRESS)

        remaining = total - progress.booked_sessions
        if remaining <= 0:
            return action(
                ActionType.FINISH,
                PlanStep.PLAN_COMPLETE,
                plan_complete(generate_progress_message(progress)),
            )
        context.first_session_number = progress.booked_sessions + 1
        context.session_group_id = progress.session_group_id
        context.multi_session_step = MultiSessionStep.CONFIRM_STRATEGY
        return action(
            ActionType.PROMPT,
            MultiSessionStep.CONFIRM_STRATEGY,
            session_count_prompt(service, remaining),
        )

    def _remaining(self, context: ConversationContext, service: ServiceConfig) -> int:
        return service.total_sessions_required - (context.first_session_number - 1)

    def _choose_count(
        self,
        context: ConversationContext,
        service: ServiceConfig,
        event: TurnEvent,
    ) -> FlowAction:
        remaining = self._remaining(context, service)
        count = event.session_count

        if count is None:
            return action(
                ActionType.PROMPT,
                MultiSessionStep.CONFIRM_STRATEGY,
                session_count_prompt(service, remaining),
            )
        if not 1 <= count <= remaining:
            return action(
                ActionType.PROMPT,
                MultiSessionStep.CONFIRM_STRATEGY,
                invalid_session_count(remaining),
            )

        context.sessions_to_book = count
        context.multi_session_step = MultiSessionStep.COLLECT_DATES
        # Dates come in separate messages, one per session
        return action(
            ActionType.PROMPT,
            MultiSessionStep.COLLECT_DATES,
            session_date_prompt(service, context.first_session_number),
        )

    def _date_prompt(self, context: ConversationContext, service: ServiceConfig) -> str:
        if service.multi_session_strategy == MultiSessionStrategy.IMMEDIATE:
            return start_date_prompt(service)
        return session_date_prompt(
            service, context.first_session_number + len(context.collected_dates)
        )

    def _collect_date(
        self,
        context: ConversationContext,
        service: ServiceConfig,
        event: TurnEvent,
    ) -> FlowAction:
        step = MultiSessionStep.COLLECT_DATES
        proposed = event.proposed_datetime

        if proposed is None:
            if event.datetime_mentioned:
                return action(ActionType.PROMPT, step, UNPARSEABLE_DATETIME)
            return action(ActionType.PROMPT, step, self._date_prompt(context, service))
        if proposed <= event.now:
            return action(ActionType.PROMPT, step, PAST_DATETIME)
        if context.collected_dates and proposed <= context.collected_dates[-1]:
            number = context.first_session_number + len(context.collected_dates)
            return action(
                ActionType.PROMPT,
                step,
                session_order_prompt(number, context.collected_dates[-1], self.tz),
            )

        context.collected_dates.append(proposed)

        wanted = 1 if service.multi_session_strategy == MultiSessionStrategy.IMMEDIATE else (
            context.sessions_to_book or 1
        )
        if len(context.collected_dates) < wanted:
            return action(ActionType.PROMPT, step, self._date_prompt(context, service))

        context.multi_session_step = MultiSessionStep.CONFIRM_ALL
        return action(
            ActionType.PROMPT,
            MultiSessionStep.CONFIRM_ALL,
            schedule_preview(service, self.build_schedule(context), self.tz),
        )

    def _confirm(
        self,
        context: ConversationContext,
        service: ServiceConfig,
        event: TurnEvent,
    ) -> FlowAction:
        if event.confirmation is True:
            return action(ActionType.COMMIT, PlanStep.COMMIT)
        if event.confirmation is False:
            return action(ActionType.FINISH, PlanStep.DECLINED, BOOKING_DECLINED)
        return action(
            ActionType.PROMPT,
            MultiSessionStep.CONFIRM_ALL,
            schedule_preview(service, self.build_schedule(context), self.tz),
        )

    def build_schedule(self, context: ConversationContext) -> list[SessionScheduleEntry]:
        """Session slots for the collected dates."""
        service = context.multi_session_service
        if service.multi_session_strategy == MultiSessionStrategy.IMMEDIATE:
            return self.engine.calculate_schedule(
                strategy=service.multi_session_strategy,
                start_time=context.collected_dates[0],
                buffer_config=service.session_buffer_config,
                session_count=context.sessions_to_book or service.total_sessions_required,
                duration_minutes=service.duration_minutes,
                first_session_number=context.first_session_number,
            )
        return self.engine.schedule_from_dates(
            context.collected_dates,
            service.duration_minutes,
            first_session_number=context.first_session_number,
        )


class MultiSessionHandler(FlowHandler):
    """Runs the multi-session flow and commits session batches."""

    def __init__(
        self,
        *args,
        payment_gate: Optional[PaymentGate] = None,
        engine: Optional[MultiSessionSchedulingEngine] = None,
        **kwargs,
    ):
        super().__init__(*args, **kwargs)
        self._payment_gate = payment_gate
        self.flow = MultiSessionFlow(self.tz, engine=engine)

    def _get_payment_gate(self) -> PaymentGate:
        if self._payment_gate is None:
            self._payment_gate = get_payment_gate()
        return self._payment_gate

    async def start(
        self,
        context: ConversationContext,
        service: ServiceConfig,
    ) -> None:
        """Attach a multi-session service to the context, with customer overrides."""
        override = await self._get_repository().get_customer_override(
            context.contact_id, service.id
        )
        context.multi_session_service = self.flow.engine.apply_customer_override(
            service, override
        )
        context.multi_session_step = None
        context.collected_dates = []
        logger.info(
            f"Multi-session plan for {service.name} "
            f"({context.multi_session_service.multi_session_strategy.value}) started "
            f"in conversation {context.conversation_id}"
        )

    async def commit(
        self,
        context: ConversationContext,
        action: FlowAction,
        policy: BookingPolicy,
        now: datetime,
    ) -> FlowResult:
        service = context.multi_session_service
        entries = self.flow.build_schedule(context)
        repository = self._get_repository()
        gate = self._get_payment_gate()

        requirement = payment_requirement_for(service)
        gated = requirement.required and gate.is_payment_enabled(policy)
        if requirement.required and not gated:
            logger.warning(
                f"Service {service.name} requires payment but payments are disabled; "
                f"confirming conversation {context.conversation_id} without payment"
            )

        batch = NewBookingBatch(
            contact_id=context.contact_id,
            service=service,
            entries=entries,
            status=BookingStatus.PENDING if gated else BookingStatus.CONFIRMED,
            conversation_id=context.conversation_id,
            session_group_id=context.session_group_id,
            total_sessions=service.total_sessions_required,
        )

        try:
            booking_ids = await repository.create_booking_batch(batch, now=now)
        except BookingPersistenceError:
            logger.error(
                f"Session batch for {service.name} failed in conversation "
                f"{context.conversation_id}",
                exc_info=True,
            )
            return FlowResult(BOOKING_FAILED, action.step, finished=True)

        if not gated:
            return FlowResult(
                sessions_booked(service, entries, self.tz), action.step, finished=True
            )

        amount = round(requirement.charge_per_session * len(booking_ids), 2)
        try:
            reply = await gate.create_and_send_link(
                context,
                booking_ids,
                description=self._payment_description(service, entries),
                amount=amount,
                now=now,
            )
        except PaymentLinkError:
            return await self._payment_fallback(context, service, entries, booking_ids, policy)

        return FlowResult(reply, MultiSessionStep.AWAITING_PAYMENT.value, finished=False)

    async def _payment_fallback(
        self,
        context: ConversationContext,
        service: ServiceConfig,
        entries: list[SessionScheduleEntry],
        booking_ids: list[str],
        policy: BookingPolicy,
    ) -> FlowResult:
        repository = self._get_repository()

        if policy.strict_payment_enforcement:
            logger.error(
                f"Payment link failed for conversation {context.conversation_id}; "
                f"strict enforcement, removing provisional bookings {booking_ids}",
                exc_info=True,
            )
            await repository.delete_bookings(booking_ids)
            return FlowResult(PAYMENT_UNAVAILABLE, PlanStep.COMMIT.value, finished=True)

        logger.warning(
            f"Payment link failed for conversation {context.conversation_id}; "
            f"lenient enforcement, confirming unpaid bookings {booking_ids}",
            exc_info=True,
        )
        await repository.confirm_bookings(booking_ids)
        return FlowResult(
            sessions_booked(
                service,
                entries,
                self.tz,
                note="Payment can be settled at your first visit.",
            ),
            PlanStep.COMMIT.value,
            finished=True,
        )

    def _payment_description(
        self,
        service: ServiceConfig,
        entries: list[SessionScheduleEntry],
    ) -> str:
        if len(entries) == 1:
            return f"{service.name} appointment"
        first, last = entries[0].session_number, entries[-1].session_number
        return f"{service.name} treatment (sessions {first}-{last})"
