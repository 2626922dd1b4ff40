from temporal_memory.event_log import (
    DEGRADED,
    STORE,
    Event,
    EventLog,
    InMemoryEventStore,
)


def test_emit_appends_and_notifies():
    log = EventLog()
    seen = []
    log.subscribe(seen.append)
    event = log.emit(STORE, id="ep-1")
    assert isinstance(event, Event)
    assert seen == [event]
    assert log.tail(1) == [event]
    assert event.payload == {"id": "ep-1"}


def test_unsubscribe_stops_delivery():
    log = EventLog()
    seen = []
    unsubscribe = log.subscribe(seen.append)
    log.emit(STORE)
    unsubscribe()
    unsubscribe()
    log.emit(STORE)
    assert len(seen) == 1


def test_failing_listener_does_not_break_emit():
    log = EventLog()
    seen = []

    def broken(_event):
        raise RuntimeError("dashboard down")

    log.subscribe(broken)
    log.subscribe(seen.append)
    log.emit(DEGRADED, reason="x")
    assert len(seen) == 1
    assert len(log.query(DEGRADED)) == 1


def test_query_filters_by_name_and_limit():
    log = EventLog()
    for i in range(5):
        log.emit(STORE, n=i)
    log.emit(DEGRADED)
    assert [e.payload["n"] for e in log.query(STORE, limit=2)] == [3, 4]
    assert len(log.query()) == 6
    assert log.tail(0) == []


def test_in_memory_store_is_bounded():
    store = InMemoryEventStore(capacity=3)
    log = EventLog(store)
    for i in range(5):
        log.emit(STORE, n=i)
    assert len(store) == 3
    assert [e.payload["n"] for e in log.tail(10)] == [2, 3, 4]
