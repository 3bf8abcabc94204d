from clustersim.state.store import ClusterStore


def test_events_run_in_due_then_schedule_order(store: ClusterStore):
    seen = []
    store.events.register_handler("record", lambda s, payload: seen.append(payload["name"]))
    store.events.schedule(200, "record", {"name": "late"})
    store.events.schedule(100, "record", {"name": "first"})
    store.events.schedule(100, "record", {"name": "second"})

    assert store.events.advance(50) == 0
    assert store.state.clock_ms == 50
    assert store.events.advance(50) == 2
    assert seen == ["first", "second"]
    assert store.events.advance(100) == 1
    assert seen == ["first", "second", "late"]
    assert store.state.pending_events == []


def test_handler_scheduling_inside_window_runs_in_same_advance(store: ClusterStore):
    seen = []

    def chain(s, payload):
        seen.append(payload["n"])
        if payload["n"] < 3:
            s.events.schedule(10, "chain", {"n": payload["n"] + 1})

    store.events.register_handler("chain", chain)
    store.events.schedule(10, "chain", {"n": 1})
    assert store.events.advance(100) == 3
    assert seen == [1, 2, 3]


def test_run_pending_and_unknown_kinds(store: ClusterStore):
    store.events.schedule(5000, "nobody-listens")
    assert store.events.run_pending() == 1
    assert store.state.clock_ms == 5000
    assert store.events.run_pending() == 0


def test_pending_events_travel_with_state_copies(store: ClusterStore):
    store.events.schedule(100, "record", {"name": "x"}, "deferred")
    copied = store.copy_state()
    assert [e.kind for e in copied.pending_events] == ["record"]
    assert copied.next_event_seq == 1
