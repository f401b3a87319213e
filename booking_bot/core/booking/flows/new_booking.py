"""
New booking flow.

The email guard runs first on every turn, including multi-session
continuations. A message held back by the guard is kept and used for
service resolution once the guard lets the conversation through.
"""

import logging
from datetime import datetime
from enum import Enum
from typing import Optional

from booking_bot.core.scheduling.types import ServiceConfig
from ..context import ConversationContext
from ..email_guard import EmailCollectionGuard
from ..errors import BookingPersistenceError
from ..messages import service_menu, service_selected
from ..policy import BookingPolicy
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
from .multi_session import MultiSessionHandler

logger = logging.getLogger(__name__)


class NewBookingStep(str, Enum):
    """Steps of the new booking flow."""

    EMAIL = "collect_email"
    MULTI_SESSION = "multi_session"
    SERVICE_SELECTED = "service_selected"
    SERVICE_MENU = "service_menu"


def match_service(text: str, services: list[ServiceConfig]) -> Optional[ServiceConfig]:
    """Active service whose name appears in the text, longest name first."""
    lowered = (text or "").lower()
    for service in sorted(services, key=lambda s: len(s.name), reverse=True):
        if service.name and service.name.lower() in lowered:
            return service
    return None


class NewBookingFlow(BookingFlow):
    """Pure service resolution."""

    def needs(self, context: ConversationContext) -> Fact:
        return Fact.SERVICES

    def process(self, context: ConversationContext, event: TurnEvent) -> FlowAction:
        text = " ".join(m for m in (context.deferred_message, event.message) if m)
        context.deferred_message = None
        service = match_service(text, event.services)

        if service is None:
            return action(
                ActionType.COMMIT, NewBookingStep.SERVICE_MENU, services=event.services
            )
        if service.is_multi_session:
            return action(
                ActionType.COMMIT, NewBookingStep.MULTI_SESSION, service=service, text=text
            )
        return action(ActionType.COMMIT, NewBookingStep.SERVICE_SELECTED, service=service)


class NewBookingHandler(FlowHandler):
    """Gates new bookings on the email policy and resolves the service."""

    def __init__(
        self,
        *args,
        email_guard: Optional[EmailCollectionGuard] = None,
        multi_session: Optional[MultiSessionHandler] = None,
        **kwargs,
    ):
        super().__init__(*args, **kwargs)
        self.flow = NewBookingFlow()
        self._email_guard = email_guard
        self._multi_session = (
            multi_session if multi_session is not None else MultiSessionHandler(*args, **kwargs)
        )

    def _get_email_guard(self) -> EmailCollectionGuard:
        if self._email_guard is None:
            self._email_guard = EmailCollectionGuard(self._get_repository())
        return self._email_guard

    async def handle(
        self,
        context: ConversationContext,
        message: str,
        policy: BookingPolicy,
        now: datetime,
    ) -> FlowResult:
        prompt = await self._get_email_guard().check(context, message, policy)
        if prompt:
            if message.strip() and context.deferred_message is None:
                context.deferred_message = message.strip()
            return FlowResult(prompt, NewBookingStep.EMAIL.value)

        if context.multi_session_service is not None:
            return await self._multi_session.handle(context, message, policy, now)

        return await super().handle(context, message, policy, now)

    async def commit(
        self,
        context: ConversationContext,
        action: FlowAction,
        policy: BookingPolicy,
        now: datetime,
    ) -> FlowResult:
        step = NewBookingStep(action.step)

        if step == NewBookingStep.MULTI_SESSION:
            await self._multi_session.start(context, action.metadata["service"])
            return await self._multi_session.handle(
                context, action.metadata["text"], policy, now
            )

        if step == NewBookingStep.SERVICE_SELECTED:
            service = action.metadata["service"]
            recommendations = await self._recommendations(context, exclude=service.id)
            return FlowResult(
                service_selected(service, recommendations), action.step, finished=True
            )

        recommendations = await self._recommendations(context)
        return FlowResult(
            service_menu(action.metadata["services"], recommendations),
            action.step,
            finished=True,
        )

    async def _recommendations(
        self,
        context: ConversationContext,
        exclude: Optional[str] = None,
    ) -> list[ServiceConfig]:
        try:
            return await self._get_repository().get_frequent_services(
                context.contact_id, exclude_service_id=exclude
            )
        except BookingPersistenceError:
            logger.warning(
                f"No recommendations for contact {context.contact_id}", exc_info=True
            )
            return []
