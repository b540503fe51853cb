#!/usr/bin/env python3
"""
Tests for the chat coordinator: identity claims, chat broadcast, typing and
the connection lifecycle including recoverable disconnects.
"""

import asyncio
import json
import unittest

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from common.constants import MessageTypes
from server.chat.chat_server import ChatServer
from server.chat.router import BroadcastRouter, CLOSE
from server.chat.session import SessionPhase
from server.utils.config import ServerConfig


def drain(queue):
    """Decode every frame currently queued, dropping the close sentinel."""
    frames = []
    while not queue.empty():
        item = queue.get_nowait()
        if item is not CLOSE:
            frames.append(json.loads(item))
    return frames


def types(frames):
    return [f["type"] for f in frames]


def claim(username, color="#FF0000", request_id=None):
    return {"type": MessageTypes.CLAIM_IDENTITY, "username": username, "color": color, "request_id": request_id}


def chat(text, mentions=None, **reply):
    return {"type": MessageTypes.CHAT_MESSAGE, "message": text, "mentions": mentions or [], **reply}


class ChatServerTestCase(unittest.IsolatedAsyncioTestCase):

    grace_seconds = 0

    async def asyncSetUp(self):
        self.server = ChatServer(ServerConfig(recovery_grace_seconds=self.grace_seconds, logs_dir=None))

    async def asyncTearDown(self):
        await self.server.shutdown()

    async def connect(self):
        session, outbox = await self.server.connect()
        return session.connection_id, outbox


class TestClaims(ChatServerTestCase):
    """Identity claiming through the coordinator."""

    async def test_new_connection_receives_active_users(self):
        a, qa = await self.connect()
        await self.server.handle_claim(a, claim("alice"))

        b, qb = await self.connect()

        frames = drain(qb)
        self.assertEqual(types(frames), [MessageTypes.ACTIVE_USERS])
        self.assertEqual([u["username"] for u in frames[0]["users"]], ["alice"])

    async def test_first_claim_sequence(self):
        a, qa = await self.connect()
        b, qb = await self.connect()
        drain(qa), drain(qb)

        result = await self.server.handle_claim(a, claim("alice", request_id="r1"))

        self.assertTrue(result["success"])
        self.assertEqual(result["request_id"], "r1")
        self.assertTrue(result["session_token"])
        self.assertEqual(types(drain(qa)), [
            MessageTypes.CLAIM_RESULT, MessageTypes.USER_JOINED,
            MessageTypes.ACTIVE_USERS, MessageTypes.PAST_MESSAGES,
        ])
        frames = drain(qb)
        self.assertEqual(types(frames), [MessageTypes.USER_JOINED, MessageTypes.ACTIVE_USERS])
        self.assertEqual(frames[0]["username"], "alice")
        self.assertEqual(frames[0]["color"], "#FF0000")

    async def test_invalid_claim_returns_error_without_broadcast(self):
        a, qa = await self.connect()
        b, qb = await self.connect()
        drain(qa), drain(qb)

        result = await self.server.handle_claim(a, claim("   "))
        self.assertFalse(result["success"])
        self.assertEqual(result["code"], "invalid_input")

        result = await self.server.handle_claim(a, claim("alice", color="#12345"))
        self.assertEqual(result["message"], "Invalid color code.")

        self.assertEqual(types(drain(qa)), [MessageTypes.CLAIM_RESULT] * 2)
        self.assertEqual(drain(qb), [])
        self.assertIsNone(self.server.get_session(a).identity)

    async def test_concurrent_claims_for_same_name(self):
        ids = [(await self.connect())[0] for _ in range(5)]

        results = await asyncio.gather(*(self.server.handle_claim(c, claim("alice")) for c in ids))

        self.assertEqual(sum(1 for r in results if r["success"]), 1)
        losers = [c for c, r in zip(ids, results) if not r["success"]]
        self.assertEqual(len(losers), 4)
        for r in results:
            if not r["success"]:
                self.assertEqual(r["code"], "name_taken")
        for c in losers:
            self.assertEqual(self.server.get_session(c).phase, SessionPhase.CONNECTED)
        self.assertEqual(len(await self.server.snapshot()), 1)

    async def test_color_reclaim_keeps_single_presence_entry(self):
        a, qa = await self.connect()
        await self.server.handle_claim(a, claim("alice", "#FF0000"))
        drain(qa)

        result = await self.server.handle_claim(a, claim("alice", "#00FF00"))

        self.assertTrue(result["success"])
        frames = drain(qa)
        # No second history replay on a re-claim
        self.assertNotIn(MessageTypes.PAST_MESSAGES, types(frames))
        users = [f for f in frames if f["type"] == MessageTypes.ACTIVE_USERS][0]["users"]
        self.assertEqual(users, [{"id": a, "username": "alice", "color": "#00FF00"}])
        self.assertEqual(self.server.get_participant_count(), 1)

    async def test_rename_frees_old_name(self):
        a, qa = await self.connect()
        b, qb = await self.connect()
        await self.server.handle_claim(a, claim("alice"))
        drain(qb)

        await self.server.handle_claim(a, claim("carol"))

        joined = [f for f in drain(qb) if f["type"] == MessageTypes.USER_JOINED][0]
        self.assertEqual(joined["username"], "carol")
        self.assertEqual(joined["previous_username"], "alice")
        result = await self.server.handle_claim(b, claim("alice"))
        self.assertTrue(result["success"])

    async def test_session_token_is_stable_across_reclaims(self):
        a, _ = await self.connect()
        first = await self.server.handle_claim(a, claim("alice"))
        second = await self.server.handle_claim(a, claim("alicia"))

        self.assertEqual(first["session_token"], second["session_token"])


class TestChat(ChatServerTestCase):
    """Message append and broadcast."""

    async def test_unauthenticated_send_is_rejected(self):
        a, qa = await self.connect()
        b, qb = await self.connect()
        await self.server.handle_claim(b, claim("bob"))
        drain(qa), drain(qb)

        message = await self.server.handle_chat(a, chat("hello"))

        self.assertIsNone(message)
        frames = drain(qa)
        self.assertEqual(types(frames), [MessageTypes.ERROR])
        self.assertEqual(frames[0]["code"], "unauthenticated")
        self.assertEqual(drain(qb), [])
        self.assertEqual(await self.server.history(), [])

    async def test_non_string_message_is_rejected(self):
        a, qa = await self.connect()
        await self.server.handle_claim(a, claim("alice"))
        drain(qa)

        await self.server.handle_chat(a, {"type": MessageTypes.CHAT_MESSAGE, "message": {"x": 1}})

        self.assertEqual(drain(qa)[0]["code"], "invalid_input")
        self.assertEqual(await self.server.history(), [])

    async def test_history_is_replayed_once_in_order(self):
        a, qa = await self.connect()
        await self.server.handle_claim(a, claim("alice"))
        for i in range(3):
            await self.server.handle_chat(a, chat(f"m{i}"))

        b, qb = await self.connect()
        await self.server.handle_claim(b, claim("bob"))

        past = [f for f in drain(qb) if f["type"] == MessageTypes.PAST_MESSAGES][0]
        self.assertEqual(past["count"], 3)
        self.assertEqual([m["message"] for m in past["messages"]], ["m0", "m1", "m2"])
        self.assertEqual([m["seq"] for m in past["messages"]], [1, 2, 3])

    async def test_reply_fields_are_passed_through(self):
        a, qa = await self.connect()
        await self.server.handle_claim(a, claim("alice"))

        message = await self.server.handle_chat(a, chat(
            "agreed", reply_to_id="does-not-exist", reply_to_user="bob", reply_to_text="hmm"
        ))

        payload = message.to_dict()
        self.assertEqual(payload["reply_to_id"], "does-not-exist")
        self.assertEqual(payload["reply_to_user"], "bob")
        self.assertEqual(payload["reply_to_text"], "hmm")

    async def test_mentions_validated_at_append_time(self):
        a, _ = await self.connect()
        b, _ = await self.connect()
        await self.server.handle_claim(a, claim("alice"))
        await self.server.handle_claim(b, claim("bob"))

        message = await self.server.handle_chat(a, chat("@bob @carol @alice", mentions=["bob", "carol"]))

        self.assertEqual(message.mentions, ["bob", "alice"])

    async def test_longer_token_does_not_mention_shorter_name(self):
        a, _ = await self.connect()
        b, qb = await self.connect()
        await self.server.handle_claim(a, claim("alice"))
        await self.server.handle_claim(b, claim("bob"))
        drain(qb)

        message = await self.server.handle_chat(a, chat("hi @bobby", mentions=["bob"]))

        self.assertEqual(message.mentions, [])
        self.assertEqual(drain(qb)[0]["mentions"], [])

    async def test_concurrent_appends_get_distinct_ordered_seqs(self):
        a, qa = await self.connect()
        await self.server.handle_claim(a, claim("alice"))
        drain(qa)

        await asyncio.gather(*(self.server.handle_chat(a, chat(str(i))) for i in range(20)))

        history = await self.server.history()
        self.assertEqual([m.seq for m in history], list(range(1, 21)))
        delivered = [f["seq"] for f in drain(qa) if f["type"] == MessageTypes.CHAT_MESSAGE]
        self.assertEqual(delivered, list(range(1, 21)))


class TestTyping(ChatServerTestCase):
    """Typing broadcasts."""

    async def asyncSetUp(self):
        await super().asyncSetUp()
        self.a, self.qa = await self.connect()
        self.b, self.qb = await self.connect()
        await self.server.handle_claim(self.a, claim("alice"))
        await self.server.handle_claim(self.b, claim("bob"))
        drain(self.qa), drain(self.qb)

    async def test_typing_goes_to_others_only(self):
        await self.server.handle_typing(self.a)

        self.assertEqual(drain(self.qa), [])
        self.assertEqual(drain(self.qb), [{"type": MessageTypes.USER_TYPING, "username": "alice"}])
        self.assertEqual(await self.server.typing_names(), ["alice"])

    async def test_stop_typing_goes_to_everyone(self):
        await self.server.handle_typing(self.a)
        drain(self.qb)

        await self.server.handle_stop_typing(self.a)

        stop = {"type": MessageTypes.USER_STOP_TYPING, "username": "alice"}
        self.assertEqual(drain(self.qa), [stop])
        self.assertEqual(drain(self.qb), [stop])
        self.assertEqual(await self.server.typing_names(), [])

    async def test_sending_a_message_clears_typing(self):
        await self.server.handle_typing(self.a)
        drain(self.qb)

        await self.server.handle_chat(self.a, chat("done"))

        self.assertEqual(types(drain(self.qb)), [MessageTypes.USER_STOP_TYPING, MessageTypes.CHAT_MESSAGE])
        self.assertEqual(await self.server.typing_names(), [])

    async def test_unidentified_typing_is_ignored(self):
        c, qc = await self.connect()
        drain(self.qa), drain(self.qb)

        await self.server.handle_typing(c)

        self.assertEqual(drain(self.qa), [])
        self.assertEqual(drain(self.qb), [])

    async def test_disconnect_clears_typing(self):
        await self.server.handle_typing(self.a)
        drain(self.qb)

        await self.server.disconnect(self.a)

        self.assertEqual(types(drain(self.qb)), [
            MessageTypes.USER_LEFT, MessageTypes.ACTIVE_USERS, MessageTypes.USER_STOP_TYPING,
        ])


class TestLifecycle(ChatServerTestCase):
    """Hard disconnects."""

    async def test_unidentified_disconnect_is_silent(self):
        a, qa = await self.connect()
        await self.server.handle_claim(a, claim("alice"))
        b, qb = await self.connect()
        drain(qa)

        await self.server.disconnect(b, recoverable=True)

        self.assertEqual(drain(qa), [])
        self.assertEqual([e.username for e in await self.server.snapshot()], ["alice"])
        self.assertIsNone(self.server.get_session(b))

    async def test_events_after_disconnect_are_ignored(self):
        a, qa = await self.connect()
        await self.server.handle_claim(a, claim("alice"))
        await self.server.disconnect(a)

        self.assertIsNone(await self.server.handle_claim(a, claim("alice")))
        self.assertIsNone(await self.server.handle_chat(a, chat("late")))
        self.assertEqual(await self.server.history(), [])

    async def test_recoverable_disconnect_without_grace_is_hard(self):
        a, _ = await self.connect()
        b, qb = await self.connect()
        await self.server.handle_claim(a, claim("alice"))
        drain(qb)

        await self.server.disconnect(a, recoverable=True)

        self.assertIn(MessageTypes.USER_LEFT, types(drain(qb)))
        self.assertEqual(self.server.get_participant_count(), 0)

    async def test_scenario(self):
        a, qa = await self.connect()
        b, qb = await self.connect()

        result = await self.server.handle_claim(a, claim("alice", "#FF0000"))
        self.assertTrue(result["success"])
        joined = [f for f in drain(qb) if f["type"] == MessageTypes.USER_JOINED]
        self.assertEqual((joined[0]["username"], joined[0]["color"]), ("alice", "#FF0000"))

        result = await self.server.handle_claim(b, claim("alice", "#00FF00"))
        self.assertEqual(result["code"], "name_taken")
        self.assertIsNone(self.server.get_session(b).identity)

        result = await self.server.handle_claim(b, claim("bob", "#00FF00"))
        self.assertTrue(result["success"])
        drain(qa), drain(qb)

        await self.server.handle_chat(a, chat("hi @bob"))

        history = await self.server.history()
        self.assertEqual(len(history), 1)
        self.assertEqual(history[0].mentions, ["bob"])
        self.assertIsNone(history[0].reply_to)
        for queue in (qa, qb):
            frames = drain(queue)
            self.assertEqual(types(frames), [MessageTypes.CHAT_MESSAGE])
            self.assertEqual(frames[0]["mentions"], ["bob"])

        await self.server.disconnect(a, recoverable=False)

        frames = drain(qb)
        self.assertEqual(frames[0], {"type": MessageTypes.USER_LEFT, "username": "alice",
                                     "timestamp": frames[0]["timestamp"]})
        self.assertEqual([u["username"] for u in frames[1]["users"]], ["bob"])
        self.assertEqual([e.username for e in await self.server.snapshot()], ["bob"])


class TestRecovery(ChatServerTestCase):
    """Recoverable disconnects within the grace window."""

    grace_seconds = 0.2

    async def asyncSetUp(self):
        await super().asyncSetUp()
        self.a, self.qa = await self.connect()
        self.b, self.qb = await self.connect()
        self.token = (await self.server.handle_claim(self.a, claim("alice")))["session_token"]
        await self.server.handle_claim(self.b, claim("bob"))
        drain(self.qa), drain(self.qb)

    async def test_identity_held_during_grace_window(self):
        await self.server.disconnect(self.a, recoverable=True)

        self.assertEqual(drain(self.qb), [])
        self.assertEqual(self.server.get_session(self.a).phase, SessionPhase.SUSPENDED)
        self.assertEqual([e.username for e in await self.server.snapshot()], ["alice", "bob"])

        c, qc = await self.connect()
        result = await self.server.handle_claim(c, claim("alice"))
        self.assertEqual(result["code"], "name_taken")

    async def test_suspend_clears_typing_with_broadcast(self):
        await self.server.handle_typing(self.a)
        drain(self.qb)

        await self.server.disconnect(self.a, recoverable=True)

        self.assertEqual(drain(self.qb), [{"type": MessageTypes.USER_STOP_TYPING, "username": "alice"}])

    async def test_expiry_releases_identity(self):
        await self.server.disconnect(self.a, recoverable=True)

        await asyncio.sleep(self.grace_seconds + 0.2)

        self.assertEqual(types(drain(self.qb)), [MessageTypes.USER_LEFT, MessageTypes.ACTIVE_USERS])
        self.assertIsNone(self.server.get_session(self.a))
        self.assertEqual([e.username for e in await self.server.snapshot()], ["bob"])

    async def test_resume_restores_session_and_replays_missed_messages(self):
        await self.server.handle_chat(self.b, chat("before"))
        await self.server.disconnect(self.a, recoverable=True)
        await self.server.handle_chat(self.b, chat("while away"))

        c, qc = await self.connect()
        drain(qc)
        resumed_id = await self.server.handle_resume(c, {"session_token": self.token, "request_id": "r9"})

        self.assertEqual(resumed_id, self.a)
        self.assertIsNone(self.server.get_session(c))
        self.assertEqual(self.server.get_session(self.a).phase, SessionPhase.IDENTIFIED)
        frames = drain(qc)
        self.assertEqual(types(frames), [
            MessageTypes.RESUME_RESULT, MessageTypes.PAST_MESSAGES, MessageTypes.ACTIVE_USERS,
        ])
        self.assertTrue(frames[0]["success"])
        self.assertEqual(frames[0]["request_id"], "r9")
        self.assertEqual(frames[0]["username"], "alice")
        self.assertEqual([m["message"] for m in frames[1]["messages"]], ["while away"])

        # The resumed session is live again and the timer no longer fires
        await asyncio.sleep(self.grace_seconds + 0.2)
        self.assertNotIn(MessageTypes.USER_LEFT, types(drain(self.qb)))
        message = await self.server.handle_chat(self.a, chat("back"))
        self.assertEqual(message.author.name, "alice")
        self.assertIn(MessageTypes.CHAT_MESSAGE, types(drain(qc)))

    async def test_resume_with_unknown_token_fails(self):
        c, qc = await self.connect()
        drain(qc)

        resumed_id = await self.server.handle_resume(c, {"session_token": "bogus"})

        self.assertEqual(resumed_id, c)
        frames = drain(qc)
        self.assertEqual(types(frames), [MessageTypes.RESUME_RESULT])
        self.assertFalse(frames[0]["success"])

    async def test_resume_of_live_session_fails(self):
        c, qc = await self.connect()

        resumed_id = await self.server.handle_resume(c, {"session_token": self.token})

        self.assertEqual(resumed_id, c)
        self.assertEqual(self.server.get_session(self.a).phase, SessionPhase.IDENTIFIED)

    async def test_resume_after_expiry_fails(self):
        await self.server.disconnect(self.a, recoverable=True)
        await asyncio.sleep(self.grace_seconds + 0.2)

        c, qc = await self.connect()
        resumed_id = await self.server.handle_resume(c, {"session_token": self.token})

        self.assertEqual(resumed_id, c)
        result = await self.server.handle_claim(c, claim("alice"))
        self.assertTrue(result["success"])

    async def test_logout_during_suspension_is_ignored(self):
        await self.server.disconnect(self.a, recoverable=True)
        await self.server.disconnect(self.a, recoverable=False)

        self.assertEqual(self.server.get_session(self.a).phase, SessionPhase.SUSPENDED)

    async def test_shutdown_cancels_pending_recoveries(self):
        await self.server.disconnect(self.a, recoverable=True)
        self.assertEqual(self.server.get_pending_recovery_count(), 1)

        await self.server.shutdown()

        self.assertEqual(self.server.get_pending_recovery_count(), 0)

    async def test_drop_after_shutdown_is_not_held(self):
        await self.server.shutdown()

        await self.server.disconnect(self.a, recoverable=True)

        self.assertEqual(self.server.get_pending_recovery_count(), 0)
        self.assertIsNone(self.server.get_session(self.a))
        self.assertIn(MessageTypes.USER_LEFT, types(drain(self.qb)))


class TestRouterWiring(unittest.IsolatedAsyncioTestCase):
    """The coordinator publishes through the router it is given."""

    async def test_empty_router_is_kept(self):
        router = BroadcastRouter(outbox_size=4)

        server = ChatServer(ServerConfig(logs_dir=None), router)

        self.assertIs(server.router, router)

    async def test_connect_attaches_to_given_router(self):
        router = BroadcastRouter()
        server = ChatServer(ServerConfig(logs_dir=None), router)

        session, outbox = await server.connect()

        self.assertTrue(router.is_attached(session.connection_id))
        self.assertEqual(types(drain(outbox)), [MessageTypes.ACTIVE_USERS])


if __name__ == '__main__':
    unittest.main()
