"""Step dispatcher - the USSD protocol engine.

Each inbound turn is routed by (turn depth, service type, session
sub-flags) through the routing table. Two rules hold for every turn:

- a release response removes the session from the store, so any later
  turn for that id gets "session expired";
- a handler exception never escapes: the session log is marked failed and
  the user gets a generic retry message.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ussd_engine.config import Settings
from ussd_engine.providers import Providers
from ussd_engine.ussd import response_builder as rb
from ussd_engine.ussd.handlers import BUNDLE_SELECTION_REQUIRED, TurnContext
from ussd_engine.ussd.routing import HandlerSet, RoutingTable, build_routing_table
from ussd_engine.ussd.session_log import SessionLogService
from ussd_engine.ussd.session_store import SessionStore
from ussd_engine.ussd.types import RequestType, SessionState, UssdRequest, UssdResponse
from ussd_engine.ussd.validators import normalize_mobile

logger = logging.getLogger(__name__)


class StepDispatcher:
    """Routes inbound turns to product handlers."""

    def __init__(
        self,
        store: SessionStore,
        session_factory: async_sessionmaker[AsyncSession],
        providers: Providers,
        settings: Settings,
        handlers: HandlerSet | None = None,
        routes: RoutingTable | None = None,
    ):
        self.store = store
        self.session_factory = session_factory
        self.providers = providers
        self.settings = settings
        self.handlers = handlers or HandlerSet()
        self.routes = routes or build_routing_table(self.handlers)

    async def handle(self, request: UssdRequest) -> UssdResponse:
        """Answer one turn."""
        session_id = request.session_id
        kind = request.request_type

        if kind == RequestType.INITIATION.value:
            return await self._initiate(request)
        if kind != RequestType.RESPONSE.value:
            # Gateway ended the session (release / timeout) or sent junk
            logger.info("Session %s ended by gateway (%s)", session_id, kind)
            response = rb.release(session_id, "Goodbye", "Session ended.")
            await self._release(session_id)
            return response

        state = await self.store.get(session_id)
        if state is None:
            logger.info("Turn for unknown or expired session %s", session_id)
            return rb.session_expired(session_id)

        try:
            response = await self._dispatch(request, state)
        except Exception as e:
            logger.exception(
                "Turn failed for session %s at depth %s", session_id, request.sequence
            )
            await self._log_quietly(
                "mark_failed", lambda log: log.mark_failed(session_id, str(e) or type(e).__name__)
            )
            response = rb.generic_error(session_id)

        if response.is_release:
            await self._release(session_id)
        else:
            current = await self.store.get(session_id)
            if current is not None:
                await self._log_quietly(
                    "log_turn",
                    lambda log: log.log_turn(
                        session_id, request.mobile, request.sequence, request.text, current
                    ),
                )
        return response

    async def _initiate(self, request: UssdRequest) -> UssdResponse:
        session_id = request.session_id
        mobile = normalize_mobile(request.mobile) or request.mobile
        await self.store.create(session_id, mobile_number=mobile)
        await self._log_quietly(
            "log_initiated", lambda log: log.log_initiated(session_id, mobile)
        )
        return rb.main_menu(session_id)

    async def _dispatch(self, request: UssdRequest, state: SessionState) -> UssdResponse:
        route = self.routes.resolve(request.sequence, state)
        if route is None:
            logger.warning(
                "No route for depth %s service %s in session %s",
                request.sequence, state.service_type, request.session_id,
            )
            return rb.release(request.session_id, "Session Ended", "Invalid option. Please restart.")

        async with self.session_factory() as db:
            try:
                ctx = TurnContext(
                    request=request,
                    state=state,
                    store=self.store,
                    db=db,
                    providers=self.providers,
                    settings=self.settings,
                )
                result = await route.handler(ctx)
                if result == BUNDLE_SELECTION_REQUIRED:
                    result = await self.handlers.bundle.select_network(ctx)
                if not isinstance(result, UssdResponse):
                    raise TypeError(f"Handler {route.name} returned {result!r}")
                await db.commit()
            except Exception:
                await db.rollback()
                raise
        return result

    async def _release(self, session_id: str) -> None:
        await self.store.delete(session_id)
        await self._log_quietly("mark_completed", lambda log: log.mark_completed(session_id))

    async def _log_quietly(
        self, what: str, write: Callable[[SessionLogService], Awaitable[object]]
    ) -> None:
        """Session log writes must never break the conversation."""
        try:
            async with self.session_factory() as db:
                await write(SessionLogService(db))
                await db.commit()
        except Exception:
            logger.exception("Session log %s failed", what)
