"""Event dispatcher driving the controller state machine."""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Set, Union

from .events import (
    Error, Event, EventTag, InvalidEventPayload, is_permitted, make_event,
)

Handler = Callable[[Any], Awaitable[Optional[Event]]]

DEFAULT_MAX_CHAIN_DEPTH = 16


class Dispatcher:
    """
    Routes each event to exactly one handler and follows the chain it starts.

    A handler returns the follow-on event (or None). The dispatcher checks the
    follow-on against the transition table before running it, so the whole
    causal chain is awaited by the original ``dispatch`` call. Failures never
    escape: unknown events are reported, while invalid payloads, illegal
    transitions and handler exceptions turn into ``Error`` events.
    """

    def __init__(self, handlers: Mapping[EventTag, Handler], max_chain_depth: int = DEFAULT_MAX_CHAIN_DEPTH):
        self.handlers: Dict[EventTag, Handler] = dict(handlers)
        self.max_chain_depth = max_chain_depth
        self.logger = logging.getLogger('soten.events')
        self._pending: Set[asyncio.Task] = set()

    async def dispatch(
        self,
        event: Union[Event, EventTag, str],
        payload: Optional[Mapping[str, Any]] = None,
    ) -> None:
        """
        Dispatch an event and await every follow-on event it causes.

        Args:
            event: An event instance, or an event tag combined with payload
            payload: Fields of the event when a tag is given
        """
        current = self._coerce(event, payload)
        depth = 0

        while current is not None:
            self.logger.info(
                f"Received event {current.tag.value} with payload {current!r}",
                extra={'operation': 'dispatch'}
            )

            handler = self.handlers.get(current.tag)
            if handler is None:
                self.logger.warning(f"Unimplemented event received: {current.tag.value}")
                return

            try:
                follow_on = await handler(current)
            except Exception as e:
                self.logger.error(f"Handler for {current.tag.value} failed: {e}", exc_info=True)
                if current.tag is EventTag.ERROR:
                    return
                follow_on = Error(message=f"Unexpected failure while handling {current.tag.value}: {e}",
                                  event=current.tag)

            if follow_on is None:
                return

            if not is_permitted(current.tag, follow_on.tag):
                self.logger.error(f"Illegal transition {current.tag.value} -> {follow_on.tag.value}")
                if current.tag is EventTag.ERROR:
                    return
                follow_on = Error(
                    message=f"Illegal transition from {current.tag.value} to {follow_on.tag.value}",
                    event=current.tag,
                )

            depth += 1
            if depth >= self.max_chain_depth and follow_on.tag is not EventTag.ERROR:
                self.logger.error(f"Event chain exceeded {self.max_chain_depth} steps at {follow_on.tag.value}")
                follow_on = Error(message="Event chain too long", event=follow_on.tag)

            current = follow_on

    def dispatch_nowait(
        self,
        event: Union[Event, EventTag, str],
        payload: Optional[Mapping[str, Any]] = None,
    ) -> asyncio.Task:
        """Schedule a dispatch on the running loop without waiting for it."""
        task = asyncio.get_running_loop().create_task(self.dispatch(event, payload))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def drain(self) -> None:
        """Wait for every fire-and-forget dispatch scheduled so far."""
        while self._pending:
            await asyncio.gather(*list(self._pending))

    def _coerce(self, event: Union[Event, EventTag, str], payload: Optional[Mapping[str, Any]]) -> Optional[Event]:
        if not isinstance(event, (EventTag, str)):
            if payload is not None:
                self.logger.warning(f"Ignoring payload passed alongside event instance {event!r}")
            return event

        try:
            tag = EventTag(event)
        except ValueError:
            self.logger.warning(f"Unimplemented event received: {event} with payload {payload!r}")
            return None

        try:
            return make_event(tag, payload)
        except InvalidEventPayload as e:
            self.logger.error(f"Rejected {tag.value} event: {e}")
            return Error(message=f"Invalid payload for {tag.value}: {e}", event=tag)
