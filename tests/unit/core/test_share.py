import json
import threading
import time

import fakeredis
import pytest

from ckdb.constants import CacheKeys, ShareStatus
from ckdb.share import ProcessShare


def test_leader_runs_the_function():
    result = ProcessShare()("k", lambda: {"v": 1}, 5)

    assert result.result == {"v": 1}
    assert result.status is ShareStatus.ORIGIN


def test_concurrent_callers_share_one_execution():
    share = ProcessShare()
    started = threading.Event()
    release = threading.Event()
    calls = []
    results = {}

    def slow():
        calls.append(1)
        started.set()
        release.wait(2)
        return {"v": 1}

    leader = threading.Thread(target=lambda: results.__setitem__("leader", share("k", slow, 5)))
    leader.start()
    assert started.wait(2)
    follower = threading.Thread(target=lambda: results.__setitem__("follower", share("k", slow, 5)))
    follower.start()
    time.sleep(0.05)
    release.set()
    leader.join(2)
    follower.join(2)

    assert len(calls) == 1
    assert results["leader"].status is ShareStatus.ORIGIN
    assert results["follower"].status is ShareStatus.PROCESS
    assert results["follower"].result == {"v": 1}


def test_leader_error_reaches_followers():
    share = ProcessShare()
    started = threading.Event()
    release = threading.Event()
    errors = []

    def failing():
        started.set()
        release.wait(2)
        raise RuntimeError("server down")

    def call():
        try:
            share("k", failing, 5)
        except RuntimeError as exc:
            errors.append(str(exc))

    leader = threading.Thread(target=call)
    leader.start()
    assert started.wait(2)
    follower = threading.Thread(target=call)
    follower.start()
    time.sleep(0.05)
    release.set()
    leader.join(2)
    follower.join(2)

    assert errors == ["server down", "server down"]


class TestChannel:
    @pytest.fixture
    def channel(self):
        return fakeredis.FakeRedis(decode_responses=True)

    def test_published_result_is_reused(self, channel):
        channel.set(CacheKeys.share_result("k"), json.dumps({"v": 2}))
        calls = []

        result = ProcessShare(channel=channel)("k", lambda: calls.append(1), 5)

        assert result.status is ShareStatus.CHANNEL
        assert result.result == {"v": 2}
        assert calls == []

    def test_leader_publishes_and_releases_the_lock(self, channel):
        result = ProcessShare(channel=channel)("k2", lambda: {"v": 3}, 5)

        assert result.status is ShareStatus.ORIGIN
        assert json.loads(channel.get(CacheKeys.share_result("k2"))) == {"v": 3}
        assert not channel.exists(CacheKeys.share_lock("k2"))

    def test_expired_wait_falls_back_to_running_the_query(self, channel):
        channel.set(CacheKeys.share_lock("k3"), "1", ex=1)
        share = ProcessShare(channel=channel, poll_interval=0.01)

        result = share("k3", lambda: {"v": 4}, 0)

        assert result.status is ShareStatus.ORIGIN
        assert result.result == {"v": 4}
