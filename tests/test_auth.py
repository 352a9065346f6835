from __future__ import annotations

from pathlib import Path
import sys
from unittest import mock

import pytest
import redis

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from recipes_api.auth import AuthGate, InMemorySessionStore, RedisSessionStore
from recipes_api.errors import PersistenceError, Unauthorized
from recipes_api.memory_storage import InMemoryUserStorage


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def create_gate(**kwargs):
    users = InMemoryUserStorage()
    users.add_user("chef", "s3cret")
    return AuthGate(users, InMemorySessionStore(), **kwargs)


def test_sign_in_issues_token_that_authenticates():
    gate = create_gate()

    token = gate.sign_in("chef", "s3cret")

    assert token
    assert gate.authenticate(token) == "chef"


@pytest.mark.parametrize("username,password", [("chef", "wrong"), ("nobody", "s3cret")])
def test_sign_in_rejects_bad_credentials(username, password):
    gate = create_gate()

    with pytest.raises(Unauthorized):
        gate.sign_in(username, password)


def test_sign_out_invalidates_token():
    gate = create_gate()
    token = gate.sign_in("chef", "s3cret")

    gate.sign_out(token)

    with pytest.raises(Unauthorized):
        gate.authenticate(token)


@pytest.mark.parametrize("token", [None, "", "forged"])
def test_authenticate_rejects_missing_or_unknown_tokens(token):
    gate = create_gate()

    with pytest.raises(Unauthorized):
        gate.authenticate(token)


def test_disabled_gate_allows_everything():
    gate = create_gate(enabled=False)

    assert gate.authenticate(None) is None


def test_in_memory_sessions_expire():
    clock = FakeClock()
    sessions = InMemorySessionStore(ttl=60, clock=clock)
    token = sessions.create("chef")

    clock.now += 59
    assert sessions.resolve(token) == "chef"

    clock.now += 1
    assert sessions.resolve(token) is None


def test_abandoned_sessions_are_purged_on_create():
    clock = FakeClock()
    sessions = InMemorySessionStore(ttl=60, clock=clock)
    abandoned = [sessions.create("chef") for _ in range(100)]

    clock.now += 60
    token = sessions.create("chef")

    assert list(sessions._sessions) == [token]
    assert all(sessions.resolve(old) is None for old in abandoned)
    assert sessions.resolve(token) == "chef"


def test_redis_sessions_use_prefixed_keys_with_ttl():
    client = mock.Mock()
    client.get.return_value = "chef"
    sessions = RedisSessionStore(client, ttl=120)

    token = sessions.create("chef")

    client.setex.assert_called_once_with(f"session:{token}", 120, "chef")
    assert sessions.resolve(token) == "chef"
    client.get.assert_called_once_with(f"session:{token}")

    sessions.destroy(token)
    client.delete.assert_called_once_with(f"session:{token}")


def test_redis_session_errors_become_persistence_errors():
    client = mock.Mock()
    client.get.side_effect = redis.ConnectionError("refused")
    client.ping.side_effect = redis.ConnectionError("refused")
    sessions = RedisSessionStore(client)

    with pytest.raises(PersistenceError):
        sessions.resolve("token")
    with pytest.raises(PersistenceError):
        sessions.ping()
