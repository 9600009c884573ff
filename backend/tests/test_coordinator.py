import json

import pytest

from matchsync.services.sync.coordinator import SyncCoordinator
from matchsync.services.sync.errors import ConnectFailed, SendFailed, TransportUnavailable
from matchsync.services.sync.storage import MemoryStore
from matchsync.services.sync.transports import (
    BROADCAST,
    CLOSED,
    CONNECTED,
    CONNECTING,
    SESSION,
    TERMINATED,
    Transport,
)

MATCH = {
    'match_id': 'm-1',
    'players': {
        'playerA': {'score': 0, 'hansoku': 0},
        'playerB': {'score': 0, 'hansoku': 0},
    },
}
NAMES = {
    'playerA': {'display_name': 'Sato', 'team_name': 'Red'},
    'playerB': {'display_name': 'Suzuki', 'team_name': 'White'},
}


class FakeTransport(Transport):
    def __init__(self, kind, session_id=None, auto_connect=True, connect_error=None):
        super().__init__()
        self.kind = kind
        self._session_id = session_id
        self.auto_connect = auto_connect
        self.connect_error = connect_error
        self.fail_send = False
        self.sent = []
        self.connect_calls = 0
        self.terminated = False
        self.detached = False

    @property
    def connection_id(self):
        return self._session_id

    def connect(self):
        self.connect_calls += 1
        if self.connect_error is not None:
            raise self.connect_error
        self._set_state(CONNECTED if self.auto_connect else CONNECTING)

    def send(self, message):
        if self.fail_send:
            raise SendFailed('display went away', kind=self.kind)
        self.sent.append(json.loads(message))

    def close(self):
        self._set_state(CLOSED)

    def terminate(self):
        self.terminated = True
        self.connection_state = TERMINATED

    def detach(self):
        self.detached = True
        self.clear_handlers()
        self.connection_state = CLOSED


class SessionFactory:
    def __init__(self, **transport_kwargs):
        self.calls = []
        self.created = []
        self.transport_kwargs = transport_kwargs

    def __call__(self, reconnect_id):
        self.calls.append(reconnect_id)
        transport = FakeTransport(SESSION, session_id=reconnect_id or f'fresh-{len(self.calls)}', **self.transport_kwargs)
        self.created.append(transport)
        return transport

    @property
    def last(self):
        return self.created[-1]


class RecordingSpawn:
    def __init__(self):
        self.tasks = []

    def __call__(self, fn, *args):
        self.tasks.append((fn, args))

    def run_flushes(self):
        # Scheduler workers take a generation argument; flush runners take none
        pending = [(fn, args) for fn, args in self.tasks if not args]
        self.tasks = [(fn, args) for fn, args in self.tasks if args]
        for fn, args in pending:
            fn(*args)


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def make_coordinator(storage=None, factory=None, broadcast=None, **kwargs):
    kwargs.setdefault('timer_push_window', 0)
    coordinator = SyncCoordinator(
        'c1',
        broadcast=broadcast if broadcast is not None else FakeTransport(BROADCAST),
        session_factory=factory,
        storage=storage if storage is not None else MemoryStore(),
        **kwargs
    )
    coordinator.open()
    return coordinator


def initialize(coordinator, **kwargs):
    coordinator.initialize_match(MATCH, 'Spring Open', 'Court A', NAMES, **kwargs)


# ---------------------------------------------------------
# Startup and explicit sync
# ---------------------------------------------------------

def test_no_persisted_id_means_no_reconnect_and_broadcast_still_mirrors():
    factory = SessionFactory()
    broadcast = FakeTransport(BROADCAST)
    coordinator = make_coordinator(factory=factory, broadcast=broadcast)
    assert factory.calls == []

    initialize(coordinator)
    coordinator.set_score('A', 1)
    assert [m['playerA']['score'] for m in broadcast.sent] == [0, 1]

    status = coordinator.start_sync()
    assert factory.calls == [None]
    session = factory.last
    assert session.sent[-1] == coordinator.get_snapshot().to_dict()
    assert session.sent[-1]['playerA']['score'] == 1
    assert status['session']['state'] == CONNECTED


def test_connected_session_id_is_persisted():
    storage = MemoryStore()
    factory = SessionFactory()
    coordinator = make_coordinator(storage=storage, factory=factory)
    coordinator.start_sync()
    assert storage.get(coordinator.session_key) == 'fresh-1'


def test_startup_reconnects_with_persisted_id():
    storage = MemoryStore({'c1:session_id': 'abc'})
    factory = SessionFactory()
    make_coordinator(storage=storage, factory=factory)
    assert factory.calls == ['abc']
    assert factory.last.is_connected
    assert storage.get('c1:session_id') == 'abc'


def test_failed_reconnect_discards_id_without_retry():
    storage = MemoryStore({'c1:session_id': 'gone'})
    factory = SessionFactory(connect_error=ConnectFailed('unknown session', kind=SESSION))
    coordinator = make_coordinator(storage=storage, factory=factory)
    assert factory.calls == ['gone']
    assert storage.get('c1:session_id') is None
    assert coordinator.sync_status()['session'] is None

    initialize(coordinator)
    coordinator.set_score('B', 1)
    assert factory.calls == ['gone']


def test_unsupported_session_transport_is_reported():
    def factory(reconnect_id):
        raise TransportUnavailable('no presentation support', kind=SESSION)

    storage = MemoryStore({'c1:session_id': 'abc'})
    coordinator = make_coordinator(storage=storage, factory=factory)
    assert storage.get('c1:session_id') is None
    status = coordinator.start_sync()
    assert status['last_error'] == 'unsupported'
    assert status['session'] is None


def test_start_sync_while_connecting_is_ignored():
    factory = SessionFactory(auto_connect=False)
    coordinator = make_coordinator(factory=factory)
    coordinator.start_sync()
    coordinator.start_sync()
    assert factory.calls == [None]


def test_mutations_apply_while_session_is_still_connecting():
    factory = SessionFactory(auto_connect=False)
    coordinator = make_coordinator(factory=factory)
    initialize(coordinator)
    coordinator.start_sync()
    coordinator.set_penalty('A', 2)
    session = factory.last
    assert session.sent == []
    assert coordinator.get_snapshot().player_b.score == 1

    session._set_state(CONNECTED)
    assert session.sent[-1]['playerB']['score'] == 1


def test_peer_close_discards_persisted_id():
    storage = MemoryStore()
    factory = SessionFactory()
    coordinator = make_coordinator(storage=storage, factory=factory)
    coordinator.start_sync()
    factory.last._set_state(CLOSED)
    assert storage.get(coordinator.session_key) is None
    assert coordinator.sync_status()['session'] is None


def test_stop_sync_terminates_and_forgets_id():
    storage = MemoryStore()
    factory = SessionFactory()
    coordinator = make_coordinator(storage=storage, factory=factory)
    coordinator.start_sync()
    session = factory.last
    coordinator.stop_sync()
    assert session.terminated
    assert storage.get(coordinator.session_key) is None


def test_shutdown_keeps_persisted_id():
    storage = MemoryStore()
    factory = SessionFactory()
    coordinator = make_coordinator(storage=storage, factory=factory)
    coordinator.start_sync()
    session = factory.last
    coordinator.shutdown()
    assert session.detached
    assert storage.get(coordinator.session_key) == 'fresh-1'


# ---------------------------------------------------------
# Pushing
# ---------------------------------------------------------

def test_every_mutation_pushes_to_all_connected_transports():
    factory = SessionFactory()
    broadcast = FakeTransport(BROADCAST)
    coordinator = make_coordinator(factory=factory, broadcast=broadcast)
    coordinator.start_sync()
    initialize(coordinator)
    coordinator.set_penalty('B', 2)
    coordinator.set_view_mode('match_result')
    coordinator.toggle_public()

    session = factory.last
    assert session.sent == broadcast.sent
    last = broadcast.sent[-1]
    assert last['playerA']['score'] == 1
    assert last['playerB']['hansoku'] == 2
    assert last['viewMode'] == 'match_result'
    assert last['isPublic'] is True
    assert last['matchResult'] == {'winner': 'playerA', 'reason': None}


def test_send_failure_on_one_transport_is_contained():
    factory = SessionFactory()
    broadcast = FakeTransport(BROADCAST)
    coordinator = make_coordinator(factory=factory, broadcast=broadcast)
    coordinator.start_sync()
    initialize(coordinator)
    factory.last.fail_send = True

    coordinator.set_score('A', 1)
    assert coordinator.get_snapshot().player_a.score == 1
    assert broadcast.sent[-1]['playerA']['score'] == 1
    assert SESSION in coordinator.sync_status()['errors']

    factory.last.fail_send = False
    coordinator.set_score('A', 2)
    assert SESSION not in coordinator.sync_status()['errors']


def test_request_snapshot_replies_with_current_snapshot():
    broadcast = FakeTransport(BROADCAST)
    coordinator = make_coordinator(broadcast=broadcast)
    initialize(coordinator)
    coordinator.set_score('B', 1)
    before = len(broadcast.sent)

    broadcast.deliver('{"type": "request_snapshot"}')
    assert len(broadcast.sent) == before + 1
    assert broadcast.sent[-1] == coordinator.get_snapshot().to_dict()


def test_request_snapshot_before_any_match_sends_nothing():
    broadcast = FakeTransport(BROADCAST)
    make_coordinator(broadcast=broadcast)
    broadcast.deliver({'type': 'request_snapshot'})
    assert broadcast.sent == []


def test_invalid_display_message_is_dropped():
    broadcast = FakeTransport(BROADCAST)
    coordinator = make_coordinator(broadcast=broadcast)
    initialize(coordinator)
    before = len(broadcast.sent)
    broadcast.deliver('not json')
    broadcast.deliver('[1, 2]')
    assert len(broadcast.sent) == before


def test_snapshot_is_isolated_from_later_mutations():
    coordinator = make_coordinator()
    group = [{'name': 'bout 1', 'winner': None}]
    initialize(coordinator, group_matches=group)
    snapshot = coordinator.get_snapshot()
    group[0]['winner'] = 'playerA'
    coordinator.set_score('A', 1)
    assert snapshot.player_a.score == 0
    assert snapshot.group_matches == [{'name': 'bout 1', 'winner': None}]


def test_operations_before_initialize_are_ignored():
    broadcast = FakeTransport(BROADCAST)
    coordinator = make_coordinator(broadcast=broadcast)
    coordinator.set_score('A', 1)
    coordinator.start_timer()
    assert coordinator.get_snapshot() is None
    assert coordinator.get_match_result() is None
    assert broadcast.sent == []


def test_invalid_arguments_raise_before_dispatch():
    coordinator = make_coordinator()
    initialize(coordinator)
    with pytest.raises(ValueError):
        coordinator.set_score('C', 1)
    with pytest.raises(ValueError):
        coordinator.set_timer_mode('sundial')
    with pytest.raises(ValueError):
        coordinator.initialize_match(MATCH, 'x', 'y', NAMES, initial_view_mode='bogus')


# ---------------------------------------------------------
# Clock
# ---------------------------------------------------------

def test_second_red_stops_clock_and_pushes_finished_result():
    broadcast = FakeTransport(BROADCAST)
    coordinator = make_coordinator(broadcast=broadcast)
    initialize(coordinator)
    coordinator.set_penalty('B', 3)
    assert coordinator.get_snapshot().player_a.score == 1
    coordinator.start_timer()
    assert coordinator.scheduler.is_running

    coordinator.set_penalty('B', 4)
    assert coordinator.scheduler.is_running is False
    last = broadcast.sent[-1]
    assert last['playerA']['score'] == 2
    assert last['isTimerRunning'] is False
    assert last['matchResult'] == {'winner': 'playerA', 'reason': 'penalty_loss'}

    result = coordinator.get_match_result()
    assert result['is_finished'] is True
    assert result['players']['playerB'] == {'score': 0, 'hansoku': 4}


def test_start_refused_once_finished():
    coordinator = make_coordinator()
    initialize(coordinator)
    coordinator.set_score('B', 2)
    coordinator.start_timer()
    assert coordinator.scheduler.is_running is False
    assert coordinator.get_snapshot().is_timer_running is False


def test_countdown_ticks_and_stops_at_zero():
    broadcast = FakeTransport(BROADCAST)
    coordinator = make_coordinator(broadcast=broadcast)
    initialize(coordinator, default_match_time_seconds=2)
    coordinator.start_timer()
    coordinator.tick()
    assert coordinator.get_snapshot().time_remaining == 1
    coordinator.tick()
    assert coordinator.get_snapshot().time_remaining == 0
    assert coordinator.scheduler.is_running is False
    assert broadcast.sent[-1]['isTimerRunning'] is False

    coordinator.tick()
    assert coordinator.get_snapshot().time_remaining == 0


def test_stale_tick_after_reinitialize_is_discarded():
    coordinator = make_coordinator()
    initialize(coordinator, default_match_time_seconds=60)
    coordinator.start_timer()
    stale = coordinator.scheduler.generation

    initialize(coordinator, default_match_time_seconds=90)
    coordinator.start_timer()
    coordinator.scheduler.on_tick(stale)
    assert coordinator.get_snapshot().time_remaining == 90


def test_timer_pushes_are_coalesced():
    clock = FakeClock()
    spawn = RecordingSpawn()
    broadcast = FakeTransport(BROADCAST)
    coordinator = make_coordinator(
        broadcast=broadcast, timer_push_window=1.0, clock=clock, spawn=spawn, sleep=lambda s: None,
    )
    initialize(coordinator, default_match_time_seconds=60)
    coordinator.start_timer()
    pushed = len(broadcast.sent)

    clock.now += 0.3
    coordinator.tick()
    clock.now += 0.3
    coordinator.tick()
    assert len(broadcast.sent) == pushed
    assert coordinator.get_snapshot().time_remaining == 58

    # Trailing flush carries the latest clock value
    clock.now += 0.4
    spawn.run_flushes()
    assert len(broadcast.sent) == pushed + 1
    assert broadcast.sent[-1]['timeRemaining'] == 58


def test_substantive_change_is_never_delayed_by_the_window():
    clock = FakeClock()
    broadcast = FakeTransport(BROADCAST)
    coordinator = make_coordinator(broadcast=broadcast, timer_push_window=1.0, clock=clock)
    initialize(coordinator)
    coordinator.start_timer()
    coordinator.tick()
    coordinator.set_score('A', 1)
    assert broadcast.sent[-1]['playerA']['score'] == 1
    assert broadcast.sent[-1]['timeRemaining'] == 179


def test_superseded_flush_is_dropped():
    clock = FakeClock()
    spawn = RecordingSpawn()
    broadcast = FakeTransport(BROADCAST)
    coordinator = make_coordinator(
        broadcast=broadcast, timer_push_window=1.0, clock=clock, spawn=spawn, sleep=lambda s: None,
    )
    initialize(coordinator)
    coordinator.start_timer()
    coordinator.tick()
    coordinator.set_score('B', 1)
    pushed = len(broadcast.sent)

    spawn.run_flushes()
    assert len(broadcast.sent) == pushed


def test_superseded_session_callbacks_are_ignored():
    storage = MemoryStore({'c1:session_id': 'gone'})
    factory = SessionFactory(connect_error=ConnectFailed('no display came back', kind=SESSION))
    coordinator = make_coordinator(storage=storage, factory=factory)
    stale = factory.last
    assert storage.get('c1:session_id') is None

    factory.transport_kwargs = {}
    initialize(coordinator)
    coordinator.start_sync()
    current = factory.last
    assert current is not stale
    sent_before = len(current.sent)

    # Late callbacks from the failed reconnect must not touch the new session
    stale._set_state(CONNECTED)
    stale.deliver({'type': 'request_snapshot'})

    assert stale.sent == []
    assert len(current.sent) == sent_before
    assert storage.get('c1:session_id') == 'fresh-2'
    assert coordinator.sync_status()['session'] == {'state': CONNECTED, 'session_id': 'fresh-2'}


def test_late_close_from_superseded_session_keeps_current_one():
    storage = MemoryStore()
    factory = SessionFactory()
    coordinator = make_coordinator(storage=storage, factory=factory)
    coordinator.start_sync()
    first = factory.last
    # Keep a handle on the first session's state callback before stop_sync clears it
    late_state = list(first._state_handlers)

    coordinator.stop_sync()
    coordinator.start_sync()
    for handler in late_state:
        handler(CLOSED, None)

    assert coordinator.sync_status()['session']['session_id'] == 'fresh-2'
    assert storage.get('c1:session_id') == 'fresh-2'
