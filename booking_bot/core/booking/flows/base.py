"""
Shared pieces of the booking sub-flows.

Each sub-flow is split in two:
- a pure flow: `needs(context)` names the one fact the current step wants,
  `process(context, event)` fills slots and returns a FlowAction
- an async handler that extracts that fact, runs the flow and executes
  commits against persistence and payments
"""

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from zoneinfo import ZoneInfo

from booking_bot.config import Settings, get_settings
from booking_bot.core.scheduling.types import ServiceConfig, SessionProgress
from ..context import ConversationContext
from ..extractor import BookingExtractor, DateTimeExtraction, get_booking_extractor
from ..policy import BookingPolicy
from ..repository import BookingRepository, get_booking_repository

logger = logging.getLogger(__name__)

# A turn settles after a handful of slot fills; more means a flow bug
MAX_TRANSITIONS = 8

_SELECTION_PATTERN = re.compile(r"\b(\d+)\b")
# Words that only frame a menu pick, e.g. "number 2 please"
_SELECTION_FILLER = re.compile(
    r"\b(number|option|choice|the|one|please|pls|thanks|thank you)\b|[#.,;:!\-]",
    re.IGNORECASE,
)
_YES_PATTERN = re.compile(
    r"\b(yes|yeah|yep|yup|sure|ok|okay|confirm|confirmed|correct|sounds good|"
    r"go ahead|perfect|please do|book it)\b|👍",
    re.IGNORECASE,
)
_NO_PATTERN = re.compile(
    r"\b(no|nope|nah|don't|do not|not now|cancel|stop|never mind|nevermind)\b|👎",
    re.IGNORECASE,
)


class ActionType(str, Enum):
    """What the handler does with a flow's decision."""

    PROMPT = "prompt"      # Reply and wait for the next message
    CONTINUE = "continue"  # Slot filled, evaluate the next step on the same message
    COMMIT = "commit"      # Execute the step's side effect
    FINISH = "finish"      # Reply and clear the context


class Fact(str, Enum):
    """The single fact a step needs from the inbound message."""

    NONE = "none"
    SELECTION = "selection"
    REASON = "reason"
    DATETIME = "datetime"
    CONFIRMATION = "confirmation"
    SESSION_COUNT = "session_count"
    PROGRESS = "progress"
    SERVICES = "services"


@dataclass
class FlowAction:
    """Decision returned by a pure flow."""

    action_type: ActionType
    step: str
    message: Optional[str] = None
    metadata: dict = field(default_factory=dict)


@dataclass
class TurnEvent:
    """The inbound message plus whatever fact was extracted from it."""

    message: str
    now: datetime
    selection: Optional[int] = None
    reason: Optional[str] = None
    proposed_datetime: Optional[datetime] = None
    datetime_mentioned: bool = False
    confirmation: Optional[bool] = None
    session_count: Optional[int] = None
    progress: Optional[SessionProgress] = None
    services: list[ServiceConfig] = field(default_factory=list)


@dataclass
class FlowResult:
    """Outcome of one handled turn."""

    reply: str
    step: str
    finished: bool = False


def parse_selection(message: str) -> Optional[int]:
    """Bare integer in a message, used as a 1-based menu index."""
    match = _SELECTION_PATTERN.search(message or "")
    return int(match.group(1)) if match else None


def selection_remainder(message: str) -> str:
    """What is left of a message once the menu number and filler are removed."""
    remainder = _SELECTION_PATTERN.sub(" ", message or "", count=1)
    return " ".join(_SELECTION_FILLER.sub(" ", remainder).split())


def parse_confirmation(message: str) -> Optional[bool]:
    """Yes/no reading of a message. None when unclear or contradictory."""
    said_yes = bool(_YES_PATTERN.search(message or ""))
    said_no = bool(_NO_PATTERN.search(message or ""))
    if said_yes == said_no:
        return None
    return said_yes


def resolve_datetime(extraction: DateTimeExtraction, tz: ZoneInfo) -> Optional[datetime]:
    """Turn extracted date/time strings into an aware datetime in `tz`."""
    if not extraction.found or not extraction.date:
        return None
    try:
        naive = datetime.fromisoformat(f"{extraction.date}T{extraction.time or '10:00'}")
    except ValueError:
        logger.debug(f"Unparseable date/time: {extraction.date} {extraction.time}")
        return None
    if naive.tzinfo is not None:
        return naive.astimezone(tz)
    return naive.replace(tzinfo=tz)


class BookingFlow(ABC):
    """Pure transition logic for one sub-flow."""

    @abstractmethod
    def needs(self, context: ConversationContext) -> Fact:
        """Fact the current step wants from the message."""

    @abstractmethod
    def process(self, context: ConversationContext, event: TurnEvent) -> FlowAction:
        """Apply one event to the context and decide what happens next."""


class FlowHandler(ABC):
    """
    Async shell around a pure flow.

    Extracts only the fact the current step needs, feeds it to the flow,
    and loops while the flow fills slots from the same message.
    """

    flow: BookingFlow

    def __init__(
        self,
        repository: Optional[BookingRepository] = None,
        extractor: Optional[BookingExtractor] = None,
        config: Optional[Settings] = None,
    ):
        self._repository = repository
        self._extractor = extractor
        self._config = config if config is not None else get_settings()
        self.tz = ZoneInfo(self._config.business_timezone)

    def _get_repository(self) -> BookingRepository:
        if self._repository is None:
            self._repository = get_booking_repository()
        return self._repository

    def _get_extractor(self) -> BookingExtractor:
        if self._extractor is None:
            self._extractor = get_booking_extractor()
        return self._extractor

    async def handle(
        self,
        context: ConversationContext,
        message: str,
        policy: BookingPolicy,
        now: datetime,
    ) -> FlowResult:
        """Run the flow on one inbound message.

        Args:
            context: Conversation context (mutated)
            message: Inbound message
            policy: Active booking policy
            now: Current time

        Returns:
            FlowResult with the reply and whether the context is finished
        """
        for _ in range(MAX_TRANSITIONS):
            fact = self.flow.needs(context)
            event = await self._build_event(fact, context, message, now)
            action = self.flow.process(context, event)

            if action.action_type == ActionType.CONTINUE:
                continue
            if action.action_type == ActionType.COMMIT:
                return await self.commit(context, action, policy, now)
            return FlowResult(
                reply=action.message or "",
                step=action.step,
                finished=action.action_type == ActionType.FINISH,
            )

        raise RuntimeError(
            f"{type(self.flow).__name__} did not settle for conversation "
            f"{context.conversation_id}"
        )

    @abstractmethod
    async def commit(
        self,
        context: ConversationContext,
        action: FlowAction,
        policy: BookingPolicy,
        now: datetime,
    ) -> FlowResult:
        """Execute the side effect a flow asked for."""

    async def _build_event(
        self,
        fact: Fact,
        context: ConversationContext,
        message: str,
        now: datetime,
    ) -> TurnEvent:
        event = TurnEvent(message=message, now=now)
        extractor = self._get_extractor()

        if fact == Fact.SELECTION:
            event.selection = parse_selection(message)
        elif fact == Fact.REASON:
            event.reason = await extractor.extract_reason(message)
        elif fact == Fact.DATETIME:
            extraction = await extractor.extract_datetime(message)
            event.datetime_mentioned = extraction.found
            event.proposed_datetime = resolve_datetime(extraction, self.tz)
        elif fact == Fact.CONFIRMATION:
            event.confirmation = parse_confirmation(message)
        elif fact == Fact.SESSION_COUNT:
            event.session_count = await extractor.extract_session_count(message)
        elif fact == Fact.PROGRESS and context.multi_session_service is not None:
            event.progress = await self._get_repository().get_session_progress(
                context.contact_id, context.multi_session_service
            )
        elif fact == Fact.SERVICES:
            event.services = await self._get_repository().list_active_services()

        return event


def action(action_type: ActionType, step: Any, message: Optional[str] = None, **metadata) -> FlowAction:
    """Build a FlowAction from a step enum."""
    return FlowAction(
        action_type=action_type,
        step=step.value if isinstance(step, Enum) else str(step),
        message=message,
        metadata=metadata,
    )
