import asyncio
import json
import random
import tempfile
from io import StringIO
from pathlib import Path

from asgiref.sync import async_to_sync
from channels.db import database_sync_to_async
from channels.exceptions import ChannelFull
from channels.layers import InMemoryChannelLayer
from channels.routing import URLRouter
from channels.testing import WebsocketCommunicator
from django.contrib.auth import get_user_model
from django.core.management import call_command
from django.test import SimpleTestCase, TestCase, override_settings
from rest_framework.test import APIClient, APIRequestFactory, force_authenticate

from authapp.models import PlayerProfile
from authapp.tokens import issue_token
from game.broadcast import Broadcaster
from game.coordinator import TurnCoordinator, TurnState
from game.exceptions import (
    Conflict,
    IntegrityViolation,
    InvalidGuess,
    NoDrawer,
    NotFound,
    StorageError,
    WordGenerationFailed,
)
from game.messages import GameMessage, MsgType, compare_words
from game.models import Word
from game.reconcile import retry_until
from game.registry import Player, PlayerRegistry
from game.routing import build_websocket_urlpatterns
from game.runtime import build_game
from game.views import ScoreboardView
from game.words import MAX_SAMPLE_ATTEMPTS, WordSource

User = get_user_model()

IN_MEMORY_LAYERS = {"default": {"BACKEND": "channels.layers.InMemoryChannelLayer"}}


class FakePlayers:
    def __init__(self):
        self.awarded = []

    async def add_points(self, player_id, delta):
        self.awarded.append((player_id, delta))
        return delta


class FakeWords:
    def __init__(self, rows):
        self.rows = dict(rows)
        self.lookups = []

    async def min_id(self):
        return min(self.rows) if self.rows else None

    async def max_id(self):
        return max(self.rows) if self.rows else None

    async def find_by_id(self, word_id):
        self.lookups.append(word_id)
        return self.rows.get(word_id)


class ScriptedRandom(random.Random):
    def __init__(self, values):
        super().__init__(0)
        self.values = list(values)

    def randint(self, a, b):
        return self.values.pop(0)


class RecordingSleep:
    def __init__(self, on_sleep=None):
        self.delays = []
        self.on_sleep = on_sleep

    async def __call__(self, delay):
        self.delays.append(delay)
        if self.on_sleep is not None:
            self.on_sleep(len(self.delays))


class FlakyLayer:
    def __init__(self, full=(), broken=()):
        self.full = set(full)
        self.broken = set(broken)
        self.sent = []

    async def send(self, channel, message):
        if channel in self.full:
            raise ChannelFull()
        if channel in self.broken:
            raise RuntimeError("connection reset")
        self.sent.append((channel, message))


class GatedLayer:
    """Holds back frames containing ``marker`` while the gate is shut."""

    def __init__(self, inner, marker):
        self.inner = inner
        self.marker = marker
        self.gate = asyncio.Event()
        self.gate.set()
        self.stalled = asyncio.Event()

    async def send(self, channel, message):
        if self.marker in message.get("text", "") and not self.gate.is_set():
            self.stalled.set()
            await self.gate.wait()
        await self.inner.send(channel, message)


class FailingPlayers(FakePlayers):
    async def add_points(self, player_id, delta):
        raise StorageError("database is locked")


class FirstChoice(random.Random):
    def choice(self, seq):
        return seq[0]


async def drain(layer, channel):
    frames = []
    while True:
        try:
            event = await asyncio.wait_for(layer.receive(channel), 0.05)
        except asyncio.TimeoutError:
            return frames
        frames.append(json.loads(event["text"]))


def types_of(frames):
    return [frame["type"] for frame in frames]


class CompareWordsTests(SimpleTestCase):
    def test_ignores_case_and_surrounding_whitespace(self):
        self.assertTrue(compare_words("  Apple ", "aPPLE"))
        self.assertTrue(compare_words("ice cream", "ICE CREAM "))
        self.assertFalse(compare_words("apple", "apples"))

    def test_inner_whitespace_must_match(self):
        self.assertFalse(compare_words("ice  cream", "ice cream"))
        self.assertFalse(compare_words("icecream", "ice cream"))
        self.assertTrue(compare_words(" ice cream\t", "Ice Cream"))

    def test_invalid_sides_raise(self):
        for first, second in [(None, "x"), ("x", None), ("", "x"), ("x", "   ")]:
            with self.subTest(first=first, second=second):
                with self.assertRaises(InvalidGuess):
                    compare_words(first, second)

    def test_message_encoding(self):
        frame = json.loads(GameMessage(MsgType.MESSAGE, "hé").encode())
        self.assertEqual(frame, {"type": "MESSAGE", "content": "hé"})
        self.assertEqual(json.loads(GameMessage(MsgType.CLEAN_CANVAS).encode())["content"], "")


class PlayerRegistryTests(SimpleTestCase):
    def setUp(self):
        self.registry = PlayerRegistry(rng=random.Random(1))
        self.registry.add_active(Player(1, "alice"), "c1")
        self.registry.add_active(Player(2, "bob"), "c2")

    def test_add_active_rejects_blank_and_duplicates(self):
        with self.assertRaises(NotFound):
            self.registry.add_active(Player(3, "carol"), "  ")
        with self.assertRaises(Conflict):
            self.registry.add_active(Player(3, "carol"), "c1")
        with self.assertRaises(Conflict):
            self.registry.add_active(Player(1, "alice"), "c9")
        self.assertEqual(len(self.registry), 2)

    def test_remove_active_is_idempotent(self):
        removed = self.registry.remove_active("c1")
        self.assertEqual(removed.player.username, "alice")
        self.assertIsNone(self.registry.remove_active("c1"))
        self.assertFalse(self.registry.is_active("c1"))
        self.assertEqual(len(self.registry), 1)

    def test_find_by_connection(self):
        self.assertEqual(self.registry.find_by_connection("c2").player.username, "bob")
        with self.assertRaises(NotFound):
            self.registry.find_by_connection("nope")
        with self.assertRaises(NotFound):
            self.registry.find_by_connection("")

    def test_at_most_one_drawer_and_word_travels_with_drawing(self):
        with self.assertRaises(NoDrawer):
            self.registry.find_drawer()
        self.registry.set_drawer("c1", "apple")
        self.registry.set_drawer("c2", "pear")

        drawers = [s for s in self.registry.list_active() if s.is_drawing]
        self.assertEqual([d.connection_id for d in drawers], ["c2"])
        for session in self.registry.list_active():
            self.assertEqual(session.is_drawing, session.current_word is not None)
        self.assertEqual(self.registry.find_drawer().current_word, "pear")

    def test_set_drawer_validates_before_touching_state(self):
        self.registry.set_drawer("c1", "apple")
        with self.assertRaises(IntegrityViolation):
            self.registry.set_drawer("c2", "  ")
        with self.assertRaises(IntegrityViolation):
            self.registry.set_drawer("missing", "pear")
        self.assertEqual(self.registry.find_drawer().connection_id, "c1")

    def test_snapshots_do_not_leak_mutation(self):
        session = self.registry.find_by_connection("c1")
        session.is_drawing = True
        session.player.points = 99
        self.assertFalse(self.registry.has_drawer())
        self.assertEqual(self.registry.find_by_connection("c1").player.points, 0)

    def test_add_points(self):
        self.assertEqual(self.registry.add_points("c1", 2), 2)
        with self.assertLogs("game.registry", level="WARNING"):
            self.assertEqual(self.registry.add_points("c1", 0), 2)
        with self.assertLogs("game.registry", level="WARNING"):
            self.assertEqual(self.registry.add_points("c1", -5), 2)
        with self.assertRaises(IntegrityViolation):
            self.registry.add_points("missing", 1)

    def test_pick_random_on_empty_registry(self):
        self.registry.remove_active("c1")
        self.registry.remove_active("c2")
        with self.assertRaises(IntegrityViolation):
            self.registry.pick_random()


class RetryUntilTests(SimpleTestCase):
    async def test_sleeps_only_between_attempts(self):
        sleep = RecordingSleep()
        calls = []

        async def probe():
            calls.append(1)
            raise NoDrawer("nobody")

        result = await retry_until(probe, attempts=3, delay=0.25, retry_on=NoDrawer, sleep=sleep)
        self.assertIsNone(result)
        self.assertEqual(len(calls), 3)
        self.assertEqual(sleep.delays, [0.25, 0.25])

    async def test_returns_first_success(self):
        sleep = RecordingSleep()
        outcomes = [NoDrawer("not yet"), "found"]

        async def probe():
            outcome = outcomes.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome

        result = await retry_until(probe, attempts=5, delay=1, retry_on=NoDrawer, sleep=sleep)
        self.assertEqual(result, "found")
        self.assertEqual(sleep.delays, [1])

    async def test_other_errors_propagate(self):
        async def probe():
            raise IntegrityViolation("two drawers")

        with self.assertRaises(IntegrityViolation):
            await retry_until(probe, attempts=3, delay=0, retry_on=NoDrawer, sleep=RecordingSleep())


class WordSourceTests(SimpleTestCase):
    async def test_skips_gaps_in_ids(self):
        repository = FakeWords({1: "apple", 5: "pear"})
        source = WordSource(repository, rng=ScriptedRandom([3, 4, 5]))
        self.assertEqual(await source.next(), "pear")
        self.assertEqual(repository.lookups, [3, 4, 5])

    async def test_empty_pool(self):
        with self.assertRaises(WordGenerationFailed):
            await WordSource(FakeWords({})).next()

    async def test_gives_up_after_bounded_attempts(self):
        repository = FakeWords({1: "apple", 50: "pear", 7: "   "})
        source = WordSource(repository, rng=ScriptedRandom([7] * MAX_SAMPLE_ATTEMPTS))
        with self.assertRaises(WordGenerationFailed):
            await source.next()
        self.assertEqual(len(repository.lookups), MAX_SAMPLE_ATTEMPTS)


class BroadcasterTests(SimpleTestCase):
    async def test_failed_sends_are_skipped(self):
        layer = FlakyLayer(full=["c2"], broken=["c3"])
        broadcaster = Broadcaster("game", channel_layer=layer)
        for channel in ("c1", "c2", "c3", "c4"):
            broadcaster.add(channel)

        with self.assertLogs("game.broadcast", level="WARNING"):
            delivered = await broadcaster.send_all("hello")
        self.assertEqual(delivered, 2)
        self.assertEqual(sorted(channel for channel, _ in layer.sent), ["c1", "c4"])

    async def test_send_all_except_and_binary_frames(self):
        layer = FlakyLayer()
        broadcaster = Broadcaster("draw", channel_layer=layer)
        broadcaster.add("c1")
        broadcaster.add("c2")
        broadcaster.discard("c3")

        self.assertEqual(await broadcaster.send_all_except("c1", b"\x01\x02"), 1)
        self.assertEqual(layer.sent, [("c2", {"type": "broadcast.frame", "bytes": b"\x01\x02"})])
        self.assertIn("c1", broadcaster)
        self.assertNotIn("c3", broadcaster)


class TurnCoordinatorTests(SimpleTestCase):
    def setUp(self):
        self.layer = InMemoryChannelLayer()
        self.registry = PlayerRegistry(rng=random.Random(7))
        self.players = FakePlayers()
        self.sleep = RecordingSleep()
        self.broadcaster = Broadcaster("game", channel_layer=self.layer)
        self.coordinator = self._coordinator()

    def _coordinator(self, players=None):
        return TurnCoordinator(
            self.registry,
            WordSource(FakeWords({1: "apple"})),
            players or self.players,
            self.broadcaster,
            retry_attempts=3,
            retry_delay=0.1,
            sleep=self.sleep,
        )

    async def _connect(self, player_id, username):
        channel = await self.layer.new_channel()
        self.broadcaster.add(channel)
        return Player(player_id, username), channel

    async def _two_players(self):
        alice, c1 = await self._connect(1, "alice")
        await self.coordinator.on_join(alice, c1)
        bob, c2 = await self._connect(2, "bob")
        await self.coordinator.on_join(bob, c2)
        await drain(self.layer, c1)
        await drain(self.layer, c2)
        return c1, c2

    async def _leave(self, channel):
        self.broadcaster.discard(channel)
        await self.coordinator.on_disconnect(channel)

    async def test_first_player_draws_second_waits(self):
        alice, c1 = await self._connect(1, "alice")
        self.assertEqual(self.coordinator.state, TurnState.NO_DRAWER)
        self.assertTrue(await self.coordinator.on_join(alice, c1))
        frames = await drain(self.layer, c1)
        self.assertEqual(types_of(frames), ["CLEAN_WORD_TO_GUESS", "WORD_TO_GUESS", "SCOREBOARD"])
        self.assertEqual(frames[1]["content"], "apple")

        bob, c2 = await self._connect(2, "bob")
        self.assertFalse(await self.coordinator.on_join(bob, c2))
        self.assertEqual(types_of(await drain(self.layer, c1)), ["SCOREBOARD"])
        frames = await drain(self.layer, c2)
        self.assertEqual(types_of(frames), ["SCOREBOARD"])
        self.assertEqual(
            json.loads(frames[0]["content"]),
            [
                {"username": "alice", "isDrawing": True, "points": 0},
                {"username": "bob", "isDrawing": False, "points": 0},
            ],
        )
        self.assertEqual(self.coordinator.state, TurnState.DRAWER_ASSIGNED)

    async def test_simultaneous_joins_produce_one_drawer(self):
        alice, c1 = await self._connect(1, "alice")
        bob, c2 = await self._connect(2, "bob")
        started = await asyncio.gather(
            self.coordinator.on_join(alice, c1),
            self.coordinator.on_join(bob, c2),
        )
        self.assertEqual(sorted(started), [False, True])
        self.assertEqual(len([s for s in self.registry.list_active() if s.is_drawing]), 1)

    async def test_correct_guess_scores_and_hands_over_the_turn(self):
        c1, c2 = await self._two_players()
        self.assertTrue(await self.coordinator.on_guess(c2, "  APPLE "))

        winner = await drain(self.layer, c2)
        self.assertEqual(
            types_of(winner),
            ["YOU_GUESSED_IT", "CLEAN_CANVAS", "CLEAN_WORD_TO_GUESS", "WORD_TO_GUESS", "SCOREBOARD"],
        )
        others = await drain(self.layer, c1)
        self.assertEqual(
            types_of(others), ["MESSAGE", "CLEAN_CANVAS", "CLEAN_WORD_TO_GUESS", "SCOREBOARD"]
        )
        self.assertEqual(others[0]["content"], "bob guessed the word!")

        drawer = self.registry.find_drawer()
        self.assertEqual(drawer.connection_id, c2)
        self.assertEqual(drawer.player.points, 1)
        self.assertEqual(self.players.awarded, [(2, 1)])

    async def test_drawer_typing_the_word_is_only_chat(self):
        c1, c2 = await self._two_players()
        self.assertFalse(await self.coordinator.on_guess(c1, "apple"))
        self.assertEqual(self.registry.find_by_connection(c1).player.points, 0)
        self.assertEqual(self.players.awarded, [])
        self.assertEqual(
            await drain(self.layer, c2), [{"type": "MESSAGE", "content": "alice: apple"}]
        )

    async def test_wrong_and_blank_guesses_are_chat(self):
        c1, c2 = await self._two_players()
        self.assertFalse(await self.coordinator.on_guess(c2, "banana"))
        self.assertFalse(await self.coordinator.on_guess(c2, "   "))
        frames = await drain(self.layer, c1)
        self.assertEqual([f["content"] for f in frames], ["bob: banana", "bob:    "])

    async def test_guess_from_unknown_connection_violates_integrity(self):
        await self._two_players()
        with self.assertRaises(IntegrityViolation):
            await self.coordinator.on_guess("ghost", "apple")

    async def test_only_the_drawer_clears_the_canvas(self):
        c1, c2 = await self._two_players()
        self.assertFalse(await self.coordinator.clear_canvas(c2))
        self.assertEqual(await drain(self.layer, c1), [])
        self.assertTrue(await self.coordinator.clear_canvas(c1))
        self.assertEqual(types_of(await drain(self.layer, c2)), ["CLEAN_CANVAS"])

    async def test_drawer_disconnect_forces_new_turn_when_nobody_draws(self):
        c1, c2 = await self._two_players()
        with self.assertLogs("game.coordinator", level="WARNING"):
            await self._leave(c1)

        self.assertEqual(self.sleep.delays, [0.1, 0.1])
        self.assertEqual(self.registry.find_drawer().connection_id, c2)
        self.assertEqual(
            types_of(await drain(self.layer, c2)),
            ["CLEAN_WORD_TO_GUESS", "WORD_TO_GUESS", "SCOREBOARD"],
        )

    async def test_drawer_disconnect_accepts_drawer_that_appears_while_waiting(self):
        c1, c2 = await self._two_players()
        self.sleep.on_sleep = lambda count: self.registry.set_drawer(c2, "pear")

        await self._leave(c1)

        self.assertEqual(self.sleep.delays, [0.1])
        drawer = self.registry.find_drawer()
        self.assertEqual((drawer.connection_id, drawer.current_word), (c2, "pear"))
        self.assertEqual(types_of(await drain(self.layer, c2)), ["SCOREBOARD"])

    async def test_last_player_leaving_leaves_no_drawer(self):
        alice, c1 = await self._connect(1, "alice")
        await self.coordinator.on_join(alice, c1)
        await self._leave(c1)
        self.assertEqual(len(self.registry), 0)
        self.assertEqual(self.sleep.delays, [])
        self.assertEqual(self.coordinator.state, TurnState.NO_DRAWER)

    async def test_non_drawer_disconnect_refreshes_scoreboard(self):
        c1, c2 = await self._two_players()
        await self._leave(c2)
        frames = await drain(self.layer, c1)
        self.assertEqual(types_of(frames), ["SCOREBOARD"])
        self.assertEqual([row["username"] for row in json.loads(frames[0]["content"])], ["alice"])
        self.assertEqual(self.registry.find_drawer().connection_id, c1)

    async def test_non_drawer_path_reassigns_when_turn_moved_to_leaver(self):
        c1, c2 = await self._two_players()
        self.broadcaster.discard(c1)
        with self.assertLogs("game.coordinator", level="WARNING"):
            await self.coordinator.on_non_drawer_disconnect(c1)
        self.assertEqual(self.registry.find_drawer().connection_id, c2)

    async def test_start_game_picks_a_drawer(self):
        alice, c1 = await self._connect(1, "alice")
        self.registry.add_active(alice, c1)
        drawer = await self.coordinator.start_game()
        self.assertEqual((drawer.connection_id, drawer.current_word), (c1, "apple"))
        self.assertEqual(types_of(await drain(self.layer, c1))[1], "WORD_TO_GUESS")

    async def test_join_without_drawer_hands_turn_to_random_player(self):
        self.registry = PlayerRegistry(rng=FirstChoice())
        self.coordinator = self._coordinator()
        alice, c1 = await self._connect(1, "alice")
        self.registry.add_active(alice, c1)
        bob, c2 = await self._connect(2, "bob")

        self.assertTrue(await self.coordinator.on_join(bob, c2))
        self.assertEqual(self.registry.find_drawer().connection_id, c1)
        self.assertEqual(
            types_of(await drain(self.layer, c1)),
            ["CLEAN_WORD_TO_GUESS", "WORD_TO_GUESS", "SCOREBOARD"],
        )
        self.assertEqual(types_of(await drain(self.layer, c2)), ["CLEAN_WORD_TO_GUESS", "SCOREBOARD"])

    async def test_frames_are_delivered_in_commit_order(self):
        gated = GatedLayer(self.layer, "carol")
        self.broadcaster = Broadcaster("game", channel_layer=gated)
        self.coordinator = self._coordinator()
        channels = {}
        for player_id, name in enumerate(["alice", "bob", "carol", "dave"], start=1):
            player, channel = await self._connect(player_id, name)
            await self.coordinator.on_join(player, channel)
            channels[name] = channel
        await drain(self.layer, channels["alice"])

        gated.gate.clear()
        self.broadcaster.discard(channels["dave"])
        first = asyncio.ensure_future(self.coordinator.on_disconnect(channels["dave"]))
        await gated.stalled.wait()
        self.broadcaster.discard(channels["carol"])
        second = asyncio.ensure_future(self.coordinator.on_disconnect(channels["carol"]))
        await asyncio.sleep(0.01)
        gated.gate.set()
        await asyncio.gather(first, second)

        frames = await drain(self.layer, channels["alice"])
        self.assertEqual(types_of(frames), ["SCOREBOARD", "SCOREBOARD"])
        latest = [row["username"] for row in json.loads(frames[-1]["content"])]
        self.assertEqual(latest, ["alice", "bob"])

    async def test_failed_score_write_changes_nothing(self):
        c1, c2 = await self._two_players()
        self.coordinator = self._coordinator(players=FailingPlayers())

        with self.assertRaises(StorageError):
            await self.coordinator.on_guess(c2, "apple")

        self.assertEqual(self.registry.find_by_connection(c2).player.points, 0)
        drawer = self.registry.find_drawer()
        self.assertEqual((drawer.connection_id, drawer.current_word), (c1, "apple"))
        self.assertEqual(await drain(self.layer, c1), [])
        self.assertEqual(await drain(self.layer, c2), [])

    async def test_failed_word_draw_does_not_score(self):
        c1, c2 = await self._two_players()
        self.coordinator.words = WordSource(FakeWords({}))

        with self.assertRaises(WordGenerationFailed):
            await self.coordinator.on_guess(c2, "apple")
        self.assertEqual(self.players.awarded, [])
        self.assertEqual(self.registry.find_by_connection(c2).player.points, 0)
        self.assertEqual(self.registry.find_drawer().connection_id, c1)

    async def test_winning_guess_racing_own_disconnect_keeps_one_drawer(self):
        c1, c2 = await self._two_players()
        self.broadcaster.discard(c2)

        results = await asyncio.gather(
            self.coordinator.on_guess(c2, "apple"),
            self.coordinator.on_disconnect(c2),
            return_exceptions=True,
        )

        self.assertTrue(results[0] is True or isinstance(results[0], IntegrityViolation))
        self.assertIsNone(results[1])
        self.assertFalse(self.registry.is_active(c2))
        drawers = [s for s in self.registry.list_active() if s.is_drawing]
        self.assertEqual([d.connection_id for d in drawers], [c1])


class PlayerMixin:
    password = "Sketch-Pass-2024"

    def _create_player(self, username, points=0):
        user = User.objects.create_user(username=username, password=self.password)
        PlayerProfile.objects.create(user=user, points=points)
        return user


@override_settings(CHANNEL_LAYERS=IN_MEMORY_LAYERS)
class GameConsumerTests(PlayerMixin, TestCase):
    def setUp(self):
        self.alice = self._create_player("alice")
        self.bob = self._create_player("bob")
        self.sleep = RecordingSleep()
        self.game = build_game(
            rng=random.Random(3), retry_attempts=3, retry_delay=0.1, sleep=self.sleep
        )
        self.application = URLRouter(build_websocket_urlpatterns(self.game))

    async def _open(self, first_frame, path="/ws/game/"):
        communicator = WebsocketCommunicator(self.application, path)
        connected, _ = await communicator.connect()
        self.assertTrue(connected)
        await communicator.send_to(text_data=first_frame)
        return communicator

    async def _receive(self, communicator, count):
        return [await communicator.receive_json_from(timeout=1) for _ in range(count)]

    async def _assert_closed(self, communicator, code, reason):
        output = await communicator.receive_output(timeout=1)
        self.assertEqual(output["type"], "websocket.close")
        self.assertEqual(output["code"], code)
        self.assertEqual(output["reason"], reason)

    def test_invalid_token_closes_with_policy_violation(self):
        async def scenario():
            communicator = await self._open("not-a-token")
            await self._assert_closed(communicator, 1008, "Invalid token.")
            await communicator.disconnect()

        async_to_sync(scenario)()
        self.assertEqual(len(self.game.registry), 0)

    def test_token_of_disabled_player_is_rejected(self):
        self.bob.is_active = False
        self.bob.save(update_fields=["is_active"])
        token = issue_token(self.bob)

        async def scenario():
            communicator = await self._open(token)
            await self._assert_closed(communicator, 1008, "Invalid token.")
            await communicator.disconnect()

        async_to_sync(scenario)()

    def test_second_player_guesses_the_word(self):
        async def scenario():
            alice = await self._open(issue_token(self.alice))
            frames = await self._receive(alice, 3)
            self.assertEqual(types_of(frames), ["CLEAN_WORD_TO_GUESS", "WORD_TO_GUESS", "SCOREBOARD"])
            word = frames[1]["content"]

            bob = await self._open(issue_token(self.bob))
            self.assertEqual(types_of(await self._receive(bob, 1)), ["SCOREBOARD"])
            self.assertEqual(types_of(await self._receive(alice, 1)), ["SCOREBOARD"])

            await bob.send_json_to({"type": "MESSAGE", "content": f" {word.upper()} "})
            bob_frames = await self._receive(bob, 5)
            self.assertEqual(
                types_of(bob_frames),
                ["YOU_GUESSED_IT", "CLEAN_CANVAS", "CLEAN_WORD_TO_GUESS", "WORD_TO_GUESS", "SCOREBOARD"],
            )
            alice_frames = await self._receive(alice, 4)
            self.assertEqual(alice_frames[0], {"type": "MESSAGE", "content": "bob guessed the word!"})
            self.assertTrue(await alice.receive_nothing())

            await alice.disconnect()
            await bob.disconnect()

        async_to_sync(scenario)()
        self.assertEqual(PlayerProfile.objects.get(user=self.bob).points, 1)
        self.assertEqual(PlayerProfile.objects.get(user=self.alice).points, 0)
        self.assertEqual(len(self.game.registry), 0)

    def test_first_frame_may_carry_a_chat_message(self):
        async def scenario():
            alice = await self._open(issue_token(self.alice))
            await self._receive(alice, 3)

            bob = await self._open(
                json.dumps({"token": issue_token(self.bob), "type": "MESSAGE", "content": "hello"})
            )
            self.assertEqual(
                await self._receive(alice, 2),
                [
                    {"type": "SCOREBOARD", "content": self.game.scoreboard.encode()},
                    {"type": "MESSAGE", "content": "bob: hello"},
                ],
            )
            await bob.disconnect()
            await alice.disconnect()

        async_to_sync(scenario)()

    def test_malformed_frames_are_ignored(self):
        async def scenario():
            alice = await self._open(issue_token(self.alice))
            await self._receive(alice, 3)
            await alice.send_to(text_data="{broken")
            await alice.send_json_to(["MESSAGE"])
            await alice.send_json_to({"type": "DANCE", "content": "x"})
            await alice.send_json_to({"type": "MESSAGE", "content": 42})
            await alice.send_json_to({"type": "MESSAGE", "content": "still here"})
            self.assertEqual(
                await alice.receive_json_from(timeout=1),
                {"type": "MESSAGE", "content": "alice: still here"},
            )
            await alice.disconnect()

        with self.assertLogs("game.consumers", level="WARNING"):
            async_to_sync(scenario)()

    def test_same_player_cannot_join_twice(self):
        token = issue_token(self.alice)

        async def scenario():
            first = await self._open(token)
            await self._receive(first, 3)
            second = await self._open(token)
            await self._assert_closed(second, 4409, "Player is already active.")
            await second.disconnect()
            await first.disconnect()

        async_to_sync(scenario)()

    def test_drawer_leaving_hands_turn_to_remaining_player(self):
        async def scenario():
            alice = await self._open(issue_token(self.alice))
            await self._receive(alice, 3)
            bob = await self._open(issue_token(self.bob))
            await self._receive(bob, 1)

            await alice.disconnect()
            frames = await self._receive(bob, 3)
            self.assertEqual(types_of(frames), ["CLEAN_WORD_TO_GUESS", "WORD_TO_GUESS", "SCOREBOARD"])
            self.assertEqual(
                json.loads(frames[2]["content"]),
                [{"username": "bob", "isDrawing": True, "points": 0}],
            )
            await bob.disconnect()

        async_to_sync(scenario)()
        self.assertEqual(self.sleep.delays, [0.1, 0.1])

    def test_integrity_violation_closes_only_the_offender(self):
        Word.objects.all().delete()

        async def scenario():
            alice = await self._open(issue_token(self.alice))
            await self._assert_closed(alice, 1011, "Game integrity has been violated.")
            await alice.disconnect()

        with self.assertLogs("game.consumers", level="ERROR"):
            async_to_sync(scenario)()
        self.assertEqual(len(self.game.registry), 0)

    def test_integrity_violation_leaves_other_players_connected(self):
        async def scenario():
            alice = await self._open(issue_token(self.alice))
            word = (await self._receive(alice, 3))[1]["content"]
            bob = await self._open(issue_token(self.bob))
            await self._receive(bob, 1)
            await self._receive(alice, 1)

            await database_sync_to_async(Word.objects.all().delete)()
            await bob.send_json_to({"type": "MESSAGE", "content": word})
            await self._assert_closed(bob, 1011, "Game integrity has been violated.")
            await bob.disconnect()

            scoreboard = await alice.receive_json_from(timeout=1)
            self.assertEqual(
                json.loads(scoreboard["content"]),
                [{"username": "alice", "isDrawing": True, "points": 0}],
            )
            await alice.send_json_to({"type": "MESSAGE", "content": "still here"})
            self.assertEqual(
                await alice.receive_json_from(timeout=1),
                {"type": "MESSAGE", "content": "alice: still here"},
            )
            await alice.disconnect()

        with self.assertLogs("game.consumers", level="ERROR"):
            async_to_sync(scenario)()
        self.assertEqual(PlayerProfile.objects.get(user=self.bob).points, 0)

    def test_draw_frames_reach_every_other_peer(self):
        async def scenario():
            alice = await self._open(issue_token(self.alice), path="/ws/draw/")
            bob = await self._open(issue_token(self.bob), path="/ws/draw/")
            stranger = WebsocketCommunicator(self.application, "/ws/draw/")
            await stranger.connect()
            await bob.receive_nothing()

            await alice.send_to(text_data='{"x":1,"y":2}')
            await alice.send_to(bytes_data=b"\x00\x01")
            self.assertEqual(await bob.receive_from(timeout=1), '{"x":1,"y":2}')
            self.assertEqual(await bob.receive_from(timeout=1), b"\x00\x01")
            self.assertTrue(await alice.receive_nothing())
            self.assertTrue(await stranger.receive_nothing())

            for communicator in (alice, bob, stranger):
                await communicator.disconnect()

        async_to_sync(scenario)()


class GameApiTests(PlayerMixin, TestCase):
    def setUp(self):
        self.client = APIClient()

    def test_leaderboard_is_public_and_ordered(self):
        self._create_player("carol", points=3)
        self._create_player("dave", points=7)
        self._create_player("erin", points=3)
        idle = self._create_player("frank", points=50)
        idle.is_active = False
        idle.save(update_fields=["is_active"])

        with override_settings(GAME_LEADERBOARD_SIZE=2):
            response = self.client.get("/api/game/leaderboard/")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(
            response.json(),
            [
                {"rank": 1, "username": "dave", "points": 7},
                {"rank": 2, "username": "carol", "points": 3},
            ],
        )

    def test_scoreboard_requires_authentication(self):
        response = self.client.get("/api/game/scoreboard/")
        self.assertEqual(response.status_code, 401)

    def test_scoreboard_reports_live_turn(self):
        user = self._create_player("carol")
        game = build_game()
        game.registry.add_active(Player(user.pk, "carol", 4), "c1")
        game.registry.add_active(Player(99, "dave"), "c2")
        game.registry.set_drawer("c2", "apple")

        request = APIRequestFactory().get("/api/game/scoreboard/")
        force_authenticate(request, user=user)
        response = ScoreboardView.as_view(game=game)(request)

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["state"], "DRAWER_ASSIGNED")
        self.assertEqual(response.data["drawer"], "dave")
        self.assertEqual(
            [dict(row) for row in response.data["players"]],
            [
                {"username": "carol", "isDrawing": False, "points": 4},
                {"username": "dave", "isDrawing": True, "points": 0},
            ],
        )
        self.assertNotIn("apple", json.dumps(response.data))


class LoadWordsCommandTests(TestCase):
    def _write(self, directory, body):
        path = Path(directory) / "words.txt"
        path.write_text(body, encoding="utf-8")
        return str(path)

    def test_adds_only_new_words(self):
        Word.objects.get_or_create(text="tree")
        with tempfile.TemporaryDirectory() as directory:
            path = self._write(directory, "Tree\n\nGalaxy\ngalaxy\n  nebula   cloud \n")
            out = StringIO()
            call_command("load_words", path, stdout=out)

        self.assertIn("added=2", out.getvalue())
        self.assertIn("skipped=2", out.getvalue())
        self.assertTrue(Word.objects.filter(text="Galaxy").exists())
        self.assertTrue(Word.objects.filter(text="nebula cloud").exists())

    def test_dry_run_writes_nothing(self):
        before = Word.objects.count()
        with tempfile.TemporaryDirectory() as directory:
            path = self._write(directory, "quasar\n")
            out = StringIO()
            call_command("load_words", path, "--dry-run", stdout=out)
        self.assertIn("added=1", out.getvalue())
        self.assertEqual(Word.objects.count(), before)

    def test_seeded_vocabulary_is_available(self):
        self.assertGreater(Word.objects.count(), 50)
