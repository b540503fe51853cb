"""
Chat server module.

Owns all shared chat state (sessions, identity registry, message log) and
serializes every mutation through a single asyncio lock. Outbound events are
queued on the broadcast router while the lock is held so each connection sees
them in commit order; socket I/O happens outside the lock.
"""

import asyncio
from typing import Dict, List, Optional, Tuple

from common.errors import ChatError, InvalidInput, Unauthenticated
from common.protocol_definitions import (
    ChatMessage, PresenceEntry, ReplyRef,
    create_active_users_message, create_claim_result_message, create_error_message,
    create_past_messages_message, create_resume_result_message, create_user_joined_message,
    create_user_left_message, create_user_stop_typing_message, create_user_typing_message
)
from server.chat.identity_registry import IdentityRegistry
from server.chat.message_log import MessageLog
from server.chat.presence import PresenceDirectory
from server.chat.router import BroadcastRouter
from server.chat.session import ConnectionSession, SessionPhase, new_connection_id
from server.chat.typing_aggregator import TypingAggregator
from server.utils.config import ServerConfig
from server.utils.logger import logger


class ChatServer:
    """Session and broadcast coordination."""

    def __init__(self, config: Optional[ServerConfig] = None, router: Optional[BroadcastRouter] = None):
        self.config = config or ServerConfig()
        self.router = router if router is not None else BroadcastRouter(self.config.outbox_size)
        self.registry = IdentityRegistry()
        self.presence = PresenceDirectory()
        self.message_log = MessageLog()
        self.typing = TypingAggregator()
        self.sessions: Dict[str, ConnectionSession] = {}  # connection_id -> session, insertion ordered
        self._tokens: Dict[str, str] = {}  # session_token -> connection_id
        self._grace_tasks: Dict[str, asyncio.Task] = {}  # connection_id -> pending expiry
        self._closed = False  # set by shutdown(); later drops are never held for recovery
        self.lock = asyncio.Lock()  # Protect shared state

    # -- connection lifecycle ---------------------------------------------

    async def connect(self, connection_id: Optional[str] = None) -> Tuple[ConnectionSession, asyncio.Queue]:
        """Register a new transport and send it the current active users list."""
        async with self.lock:
            connection_id = connection_id or new_connection_id()
            session = ConnectionSession(connection_id=connection_id)
            self.sessions[connection_id] = session
            outbox = self.router.attach(connection_id)
            # Lets client-side mention matching work before the user has identified
            self.router.send(connection_id, create_active_users_message(self._snapshot()))
        return session, outbox

    async def disconnect(self, connection_id: str, recoverable: bool = False):
        """
        Handle transport teardown.

        A recoverable disconnect of an identified session keeps its identity
        for the configured grace window; anything else releases it at once.
        """
        async with self.lock:
            session = self.sessions.get(connection_id)
            if session is None or not session.is_live:
                return
            self.router.detach(connection_id)

            if recoverable and session.is_identified and self.config.recovery_enabled and not self._closed:
                self._suspend(session)
            else:
                self._finalize(session)

    def _suspend(self, session: ConnectionSession):
        if session.typing:
            self.router.broadcast(create_user_stop_typing_message(session.name))
        session.suspend(self.message_log.last_seq)
        logger.log_suspend(session.name, session.connection_id, self.config.recovery_grace_seconds)
        self._grace_tasks[session.connection_id] = asyncio.create_task(
            self._expire_after_grace(session.connection_id)
        )

    async def _expire_after_grace(self, connection_id: str):
        await asyncio.sleep(self.config.recovery_grace_seconds)
        async with self.lock:
            self._grace_tasks.pop(connection_id, None)
            session = self.sessions.get(connection_id)
            if session is not None and session.phase == SessionPhase.SUSPENDED:
                logger.info(f"Recovery window closed for {session.name} (connection={connection_id})")
                self._finalize(session)

    def _finalize(self, session: ConnectionSession):
        """Hard disconnect. Caller holds the lock."""
        was_typing = session.typing
        del self.sessions[session.connection_id]
        if session.session_token:
            self._tokens.pop(session.session_token, None)
        task = self._grace_tasks.pop(session.connection_id, None)
        if task is not None:
            task.cancel()

        released = self.registry.release(session.connection_id)
        session.close()
        logger.log_disconnect(released, session.connection_id)

        if released is None:
            return
        self.router.broadcast(create_user_left_message(released))
        self.router.broadcast(create_active_users_message(self._snapshot()))
        if was_typing:
            self.router.broadcast(create_user_stop_typing_message(released))

    async def shutdown(self):
        """Cancel pending recovery timers."""
        async with self.lock:
            self._closed = True
            tasks = list(self._grace_tasks.values())
            self._grace_tasks.clear()
        for task in tasks:
            task.cancel()

    # -- identity ---------------------------------------------------------

    async def handle_claim(self, connection_id: str, data: dict) -> Optional[dict]:
        """Process a claim identity request. Returns the claim result sent to the caller."""
        request_id = data.get('request_id')

        async with self.lock:
            session = self.sessions.get(connection_id)
            if session is None or not session.is_live:
                return None

            previous = session.identity
            try:
                identity = self.registry.claim(connection_id, data.get('username'), data.get('color'))
            except ChatError as e:
                logger.log_claim_rejected(connection_id, e.message)
                result = create_claim_result_message(request_id, False, e.message, code=e.code)
                self.router.send(connection_id, result)
                return result

            renamed = previous is not None and previous.name != identity.name
            if renamed and self.typing.stop(session):
                self.router.broadcast(create_user_stop_typing_message(previous.name))

            session.identify(identity)
            self._tokens[session.session_token] = connection_id
            logger.log_claim(identity.name, identity.color, connection_id, previous.name if previous else None)

            result = create_claim_result_message(
                request_id, True, 'Username and color set successfully!',
                identity=identity, session_token=session.session_token
            )
            self.router.send(connection_id, result)
            self.router.broadcast(create_user_joined_message(identity, previous.name if renamed else None))
            self.router.broadcast(create_active_users_message(self._snapshot()))

            if not session.history_sent:
                session.history_sent = True
                self.router.send(connection_id, create_past_messages_message(self.message_log.history()))
            return result

    async def handle_resume(self, connection_id: str, data: dict) -> str:
        """
        Re-attach a suspended session to this new transport.

        Returns the connection id the caller should use from now on: the
        suspended session's id on success, the caller's own id otherwise.
        """
        request_id = data.get('request_id')
        token = data.get('session_token')

        async with self.lock:
            current = self.sessions.get(connection_id)
            if current is None or not current.is_live:
                return connection_id

            old_id = self._tokens.get(token) if isinstance(token, str) else None
            session = self.sessions.get(old_id) if old_id else None
            if session is None or session.phase != SessionPhase.SUSPENDED or current.is_identified:
                self.router.send(connection_id, create_resume_result_message(
                    request_id, False, 'Session cannot be resumed. Please set a username and color.'
                ))
                return connection_id

            task = self._grace_tasks.pop(old_id, None)
            if task is not None:
                task.cancel()

            # The fresh session never identified, so dropping it needs no broadcast
            del self.sessions[connection_id]
            self.router.rebind(connection_id, old_id)
            session.resume()

            missed = self.message_log.since(session.suspended_at_seq)
            logger.log_resume(session.name, old_id, len(missed))
            self.router.send(old_id, create_resume_result_message(
                request_id, True, 'Session resumed.', identity=session.identity
            ))
            self.router.send(old_id, create_past_messages_message(missed))
            self.router.send(old_id, create_active_users_message(self._snapshot()))
            return old_id

    # -- messages ---------------------------------------------------------

    async def handle_chat(self, connection_id: str, data: dict) -> Optional[ChatMessage]:
        """Validate, log and broadcast a chat message."""
        async with self.lock:
            session = self.sessions.get(connection_id)
            if session is None or not session.is_live:
                return None
            try:
                if not session.is_identified:
                    raise Unauthenticated('Authentication required. Please set a username and color first!')
                text = data.get('message', data.get('text'))
                if not isinstance(text, str):
                    raise InvalidInput('Invalid message.')
            except ChatError as e:
                self.router.send(connection_id, create_error_message(e.message, e.code))
                return None

            mentions = self.presence.resolve_mentions(
                text, data.get('mentions'), session.name, self.sessions.values()
            )
            message = self.message_log.append(session.identity, text, ReplyRef.from_payload(data), mentions)
            logger.log_chat(session.name, connection_id, text)

            if self.typing.stop(session):
                self.router.broadcast(create_user_stop_typing_message(session.name))
            self.router.broadcast(message.to_dict())
            return message

    # -- typing -----------------------------------------------------------

    async def handle_typing(self, connection_id: str, data: Optional[dict] = None):
        """Mark the sender as typing and tell everyone else."""
        async with self.lock:
            session = self.sessions.get(connection_id)
            if session is None or not session.is_live or not session.is_identified:
                return
            self.typing.start(session)
            self.router.broadcast(create_user_typing_message(session.name), exclude=connection_id)

    async def handle_stop_typing(self, connection_id: str, data: Optional[dict] = None):
        """Clear the sender's typing flag and tell everyone."""
        async with self.lock:
            session = self.sessions.get(connection_id)
            if session is None or not session.is_live or not session.is_identified:
                return
            self.typing.stop(session)
            self.router.broadcast(create_user_stop_typing_message(session.name))

    # -- queries ----------------------------------------------------------

    def _snapshot(self) -> List[PresenceEntry]:
        return self.presence.snapshot(self.sessions.values())

    async def snapshot(self) -> List[PresenceEntry]:
        """Current active users list."""
        async with self.lock:
            return self._snapshot()

    async def typing_names(self) -> List[str]:
        async with self.lock:
            return self.typing.typing_names(self.sessions.values())

    async def history(self) -> List[ChatMessage]:
        async with self.lock:
            return self.message_log.history()

    def get_session(self, connection_id: str) -> Optional[ConnectionSession]:
        return self.sessions.get(connection_id)

    def get_participant_count(self) -> int:
        """Get the number of identified participants."""
        return len(self.registry)

    def get_pending_recovery_count(self) -> int:
        """Number of suspended sessions still waiting out their grace window."""
        return len(self._grace_tasks)
