import asyncio

from duelmatch.backend.config import BrokerSettings
from duelmatch.backend.queue import QueueManager
from duelmatch.backend.supervisor import TimeoutSupervisor
from duelmatch.peer.runtime import LoopbackChannel, SessionRuntime

FAST = BrokerSettings(handshake_timeout_s=0.3, ack_grace_s=0.1, rematch_timeout_s=0.3)


def _runtimes(seed: int = 11) -> tuple[SessionRuntime, SessionRuntime]:
    host_channel, guest_channel = LoopbackChannel.pair()
    host = SessionRuntime("host", "s-1", host_channel, settings=FAST, seed=seed, tick_s=0.02, idle_timeout_s=2.0)
    guest = SessionRuntime("guest", "s-1", guest_channel, settings=FAST, tick_s=0.02, idle_timeout_s=2.0)
    return host, guest


def test_both_sides_finish_with_the_same_state() -> None:
    async def scenario():
        host, guest = _runtimes()
        return await asyncio.gather(host.run(), guest.run())

    host_outcome, guest_outcome = asyncio.run(scenario())

    assert host_outcome.status == "ended"
    assert guest_outcome.status == "ended"
    assert host_outcome.return_to_lobby is False
    assert host_outcome.winner == guest_outcome.winner
    assert host_outcome.state == guest_outcome.state
    assert host_outcome.state["meta"]["seed"] == 11


def test_handshake_without_peer_fails_and_returns_to_lobby() -> None:
    supervisor = TimeoutSupervisor(QueueManager(), FAST)

    async def scenario():
        channel, _ = LoopbackChannel.pair()
        runtime = SessionRuntime("guest", "s-1", channel, settings=FAST, tick_s=0.02, supervisor=supervisor)
        return await runtime.run()

    outcome = asyncio.run(scenario())

    assert outcome.status == "failed"
    assert outcome.return_to_lobby is True
    assert "s-1" in outcome.reason
    assert supervisor.sweep().failed_handshakes == []


def test_closed_channel_is_reported_as_lost() -> None:
    async def scenario():
        host_channel, guest_channel = LoopbackChannel.pair()
        await guest_channel.close()
        runtime = SessionRuntime("host", "s-1", host_channel, settings=FAST, seed=1, tick_s=0.02)
        return await runtime.run()

    outcome = asyncio.run(scenario())

    assert outcome.status == "lost"
    assert outcome.return_to_lobby is True


def test_malformed_messages_are_skipped() -> None:
    async def scenario():
        host, guest = _runtimes(seed=5)
        await guest.channel.send({"type": "nonsense"})
        await host.channel.send({"seq": "x"})
        return await asyncio.gather(host.run(), guest.run())

    host_outcome, guest_outcome = asyncio.run(scenario())

    assert host_outcome.status == guest_outcome.status == "ended"


def test_rematch_swaps_roles_and_plays_again() -> None:
    async def scenario():
        host, guest = _runtimes(seed=3)
        await asyncio.gather(host.run(), guest.run())
        next_host_side, next_guest_side = await asyncio.gather(
            host.negotiate_rematch(), guest.negotiate_rematch()
        )
        outcomes = await asyncio.gather(next_host_side.run(), next_guest_side.run())
        return next_host_side, next_guest_side, outcomes

    old_host_next, old_guest_next, outcomes = asyncio.run(scenario())

    assert old_host_next.role == "guest"
    assert old_guest_next.role == "host"
    assert old_host_next.session_id == old_guest_next.session_id == "s-1#r1"
    assert [outcome.status for outcome in outcomes] == ["ended", "ended"]
    assert outcomes[0].winner == outcomes[1].winner


def test_declined_rematch_returns_none_on_both_sides() -> None:
    async def scenario():
        host, guest = _runtimes(seed=4)
        await asyncio.gather(host.run(), guest.run())
        return await asyncio.gather(host.negotiate_rematch(), guest.negotiate_rematch(accept=False))

    assert asyncio.run(scenario()) == [None, None]


def test_rematch_before_the_session_ran_is_refused() -> None:
    async def scenario():
        host, _ = _runtimes()
        return await host.negotiate_rematch()

    assert asyncio.run(scenario()) is None


def test_idle_bound_comes_from_settings() -> None:
    async def scenario():
        channel, _ = LoopbackChannel.pair()
        return SessionRuntime("host", "s-1", channel).idle_timeout_s

    assert asyncio.run(scenario()) == BrokerSettings().idle_timeout_s == 30.0


def test_host_gives_up_when_guest_goes_silent_after_ready() -> None:
    settings = BrokerSettings(handshake_timeout_s=0.3, ack_grace_s=0.1, idle_timeout_s=0.3)

    async def scenario():
        host_channel, guest_channel = LoopbackChannel.pair()
        await guest_channel.send({"type": "ready"})
        host = SessionRuntime("host", "s-1", host_channel, settings=settings, seed=11, tick_s=0.02)
        return await asyncio.wait_for(host.run(), 3.0)

    outcome = asyncio.run(scenario())

    assert outcome.status == "lost"
    assert outcome.return_to_lobby is True
    assert "silent" in outcome.reason
