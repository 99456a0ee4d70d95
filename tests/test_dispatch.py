"""Test scoped dispatch, global broadcast and the before-phase veto."""

import re

import pytest

from scoped_bus import EventTypes, Phase, ScopedEventBus
from scoped_bus.errors import ListenerError
from tests.mocks import Exploding, Recorder, RecordingTarget


class TestScopedDelivery:
    """Scoped listeners and global broadcast."""

    def test_unscoped_dispatch_reaches_global_listeners(self):
        bus = ScopedEventBus()
        global_listener = Recorder("global")
        bus.target.register("test", global_listener)

        bus.dispatch("test")
        bus.dispatch("test2")

        assert global_listener.calls == 1
        assert global_listener.events[0].detail == {"phase": Phase.AFTER, "scope": None}

    def test_checkout_example(self):
        bus = ScopedEventBus()
        cart = Recorder("cart")
        global_listener = Recorder("global")
        bus.register("item-added", cart, "cart", "checkout")
        bus.target.register("item-added", global_listener)

        bus.dispatch("item-added", "checkout")
        assert cart.calls == 1
        assert global_listener.calls == 1

        bus.dispatch("item-added")
        assert cart.calls == 1
        assert global_listener.calls == 2

    def test_only_matching_scope_is_invoked(self):
        bus = ScopedEventBus()
        scoped1, scoped2 = Recorder("scoped1"), Recorder("scoped2")
        bus.register("test", scoped1, "sub-1", "scope-1")
        bus.register("test", scoped2, "sub-1", "scope-2")

        bus.dispatch("test", "scope-2")

        assert scoped1.calls == 0
        assert scoped2.calls == 1
        assert scoped2.events[0].scope == "scope-2"

    def test_unscoped_subscription_hears_every_scope(self):
        bus = ScopedEventBus()
        listener = Recorder()
        bus.subscribe("test", listener, "sub-1")

        bus.dispatch("test", "scope-1")
        bus.dispatch("test", "scope-2")
        bus.dispatch("test")

        assert [e.scope for e in listener.events] == ["scope-1", "scope-2", None]

    def test_phase_must_match(self):
        bus = ScopedEventBus()
        before, after = Recorder("before"), Recorder("after")
        bus.register("test", before, "sub-1", "scope-1", Phase.BEFORE)
        bus.register("test", after, "sub-1", "scope-1", Phase.AFTER)

        bus.dispatch("test", "scope-1", Phase.BEFORE)

        assert before.calls == 1
        assert after.calls == 0
        assert before.events[0].phase is Phase.BEFORE

    def test_registration_order_is_kept(self):
        bus = ScopedEventBus()
        order = []
        for name in ("first", "second", "third"):
            bus.register("test", lambda e, name=name: order.append(name), name, "scope-1")

        bus.dispatch("test", "scope-1")

        assert order == ["first", "second", "third"]

    def test_scoped_listeners_run_before_broadcast(self):
        target = RecordingTarget()
        bus = ScopedEventBus(target)
        order = []
        bus.register("test", lambda e: order.append("scoped"), "sub-1", "scope-1")
        target.register("test", lambda e: order.append("global"))

        bus.dispatch("test", "scope-1")

        assert order == ["scoped", "global"]

    def test_custom_detail_is_delivered(self):
        bus = ScopedEventBus()
        listener = Recorder()
        bus.register("test", listener, "sub-4", "scope-1")

        bus.dispatch("test", "scope-1", "after", {"customProperty": True})

        event = listener.events[0]
        assert event.detail["customProperty"] is True
        assert event.detail["phase"] is Phase.AFTER
        assert event.detail["scope"] == "scope-1"
        assert event.type == "test"

    def test_same_payload_reaches_scoped_and_global(self):
        bus = ScopedEventBus()
        scoped, global_listener = Recorder(), Recorder()
        bus.register("test", scoped, "sub-1", "scope-1")
        bus.target.register("test", global_listener)

        bus.dispatch("test", "scope-1")

        assert scoped.events[0] is global_listener.events[0]

    def test_enum_event_names(self):
        bus = ScopedEventBus()
        listener = Recorder()
        bus.register(EventTypes.EVENTBUS_READY, listener, "app")

        bus.announce_ready()

        assert listener.events[0].type == "eventbus-ready"

    def test_publish_alias_delivers_to_scoped_listener(self):
        bus = ScopedEventBus()
        listener = Recorder()
        bus.subscribe("test", listener, "sub-1", "scope-1")

        bus.publish("test", "scope-1")

        assert listener.calls == 1
        assert listener.events[0].scope == "scope-1"


class TestPatternDelivery:
    """Pattern listeners under a scope."""

    def test_order_pattern_example(self):
        bus = ScopedEventBus()
        billing = Recorder("billing")
        bus.register(re.compile(r"^order-\d+$"), billing, "billing", "orders")

        bus.dispatch("order-42", "orders")
        bus.dispatch("order-abc", "orders")

        assert billing.calls == 1
        assert billing.events[0].type == "order-42"

    def test_pattern_needs_full_match(self):
        bus = ScopedEventBus()
        listener = Recorder()
        bus.register(re.compile(r"regex-\d"), listener, "regex-1", "regex")

        bus.dispatch("regex-1", "regex")
        bus.dispatch("regex-10", "regex")
        bus.dispatch("xregex-1", "regex")

        assert listener.calls == 1

    def test_pattern_only_fires_in_its_scope(self):
        bus = ScopedEventBus()
        listener = Recorder()
        bus.register(re.compile(r"regex-\d+"), listener, "regex-2", "regex")

        bus.dispatch("regex-10", "other")
        bus.dispatch("regex-10")

        assert listener.calls == 0

    def test_pattern_phase_must_match(self):
        bus = ScopedEventBus()
        listener = Recorder()
        bus.register(re.compile(r"order-\d+"), listener, "billing", "orders", Phase.BEFORE)

        bus.dispatch("order-1", "orders")
        bus.dispatch("order-1", "orders", Phase.BEFORE)

        assert listener.calls == 1

    def test_exact_listeners_run_before_patterns(self):
        bus = ScopedEventBus()
        order = []
        bus.register(re.compile(r"order-\d+"), lambda e: order.append("pattern"), "billing", "orders")
        bus.register("order-1", lambda e: order.append("exact"), "shipping", "orders")

        bus.dispatch("order-1", "orders")

        assert order == ["exact", "pattern"]


class TestBeforeVeto:
    """Before-phase cancellation and return values."""

    def test_cancelled_before_event_skips_broadcast(self):
        target = RecordingTarget()
        bus = ScopedEventBus(target)
        bus.register("save", Recorder(cancel=True), "validator", "editor", Phase.BEFORE)

        delivered = bus.dispatch("save", "editor", Phase.BEFORE)

        assert delivered is False
        assert target.broadcasts == []

    def test_uncancelled_before_event_is_broadcast(self):
        target = RecordingTarget()
        bus = ScopedEventBus(target)
        bus.register("save", Recorder(), "validator", "editor", Phase.BEFORE)

        delivered = bus.dispatch("save", "editor", Phase.BEFORE)

        assert delivered is True
        assert len(target.broadcasts) == 1

    def test_before_event_is_cancelable_by_default(self):
        bus = ScopedEventBus()
        listener = Recorder()
        bus.register("save", listener, "validator", phase=Phase.BEFORE)

        bus.dispatch("save", phase=Phase.BEFORE)

        assert listener.events[0].cancelable is True

    def test_non_cancelable_before_event_cannot_be_vetoed(self):
        target = RecordingTarget()
        bus = ScopedEventBus(target)
        bus.register("save", Recorder(cancel=True), "validator", "editor", Phase.BEFORE)

        delivered = bus.dispatch("save", "editor", Phase.BEFORE, cancelable=False)

        assert delivered is True
        assert len(target.broadcasts) == 1
        assert target.broadcasts[0].default_prevented is False

    def test_after_event_is_never_suppressed(self):
        target = RecordingTarget()
        bus = ScopedEventBus(target)
        bus.register("save", Recorder(cancel=True), "validator", "editor")

        delivered = bus.dispatch("save", "editor")

        assert delivered is True
        assert len(target.broadcasts) == 1

    def test_cancelable_after_event_reports_broadcast_cancellation(self):
        target = RecordingTarget()
        bus = ScopedEventBus(target)
        bus.register("save", Recorder(cancel=True), "validator", "editor")

        delivered = bus.dispatch("save", "editor", cancelable=True)

        assert delivered is False
        assert len(target.broadcasts) == 1

    def test_global_listener_can_cancel_before_event(self):
        bus = ScopedEventBus()
        bus.target.register("save", Recorder(cancel=True))

        assert bus.dispatch("save", phase=Phase.BEFORE) is False

    def test_return_value_mirrors_target(self):
        bus = ScopedEventBus(RecordingTarget(result=False))

        assert bus.dispatch("test", "scope-1") is False


class TestListenerFailures:
    """A failing listener must not block the others."""

    def test_failing_listener_does_not_block_others(self):
        target = RecordingTarget()
        bus = ScopedEventBus(target)
        exploding, working = Exploding(), Recorder()
        bus.register("test", exploding, "bad", "scope-1")
        bus.register("test", working, "good", "scope-1")

        delivered = bus.dispatch("test", "scope-1")

        assert delivered is True
        assert exploding.calls == 1
        assert working.calls == 1
        assert len(target.broadcasts) == 1
        assert bus.listener_count("test") == 2

    def test_failing_global_listener_is_isolated(self):
        bus = ScopedEventBus()
        working = Recorder()
        bus.target.register("test", Exploding())
        bus.target.register("test", working)

        assert bus.dispatch("test") is True
        assert working.calls == 1

    def test_propagate_errors_raises_after_delivery(self):
        bus = ScopedEventBus(propagate_errors=True)
        working = Recorder()
        bus.register("test", Exploding(), "bad", "scope-1")
        bus.register("test", working, "good", "scope-1")

        with pytest.raises(ListenerError) as exc_info:
            bus.dispatch("test", "scope-1")

        assert working.calls == 1
        assert exc_info.value.code == "listener_failed"
        assert isinstance(exc_info.value.original_error, RuntimeError)

    def test_propagate_errors_covers_scoped_and_global_failures(self):
        bus = ScopedEventBus(propagate_errors=True)
        global_listener = Recorder("global")

        def scoped_failure(event):
            raise ValueError("scoped")

        def global_failure(event):
            raise KeyError("global")

        bus.register("test", scoped_failure, "bad", "scope-1")
        bus.target.register("test", global_failure)
        bus.target.register("test", global_listener)

        with pytest.raises(ListenerError) as exc_info:
            bus.dispatch("test", "scope-1")

        error = exc_info.value
        assert global_listener.calls == 1
        assert error.details["failures"] == 2
        assert isinstance(error.original_error, ValueError)
        assert isinstance(error.details["errors"][1], KeyError)

    def test_failing_debug_callback_is_isolated(self):
        bus = ScopedEventBus(debug_callback=Exploding())
        listener = Recorder()
        bus.register("test", listener, "sub-1")

        bus.dispatch("test")

        assert listener.calls == 1


class TestReentrancy:
    """Listeners that mutate the bus while an event is being delivered."""

    def test_listener_removed_mid_dispatch_is_skipped(self):
        bus = ScopedEventBus()
        second = Recorder("second")
        third = Recorder("third")
        bus.register("test", lambda e: bus.unregister("test", second, "sub-2"), "sub-1", "scope-1")
        bus.register("test", second, "sub-2", "scope-1")
        bus.register("test", third, "sub-3", "scope-1")

        bus.dispatch("test", "scope-1")

        assert second.calls == 0
        assert third.calls == 1

    def test_self_removal_does_not_skip_next_listener(self):
        bus = ScopedEventBus()
        after = Recorder("after")
        unsubscribe = None

        def once(event):
            unsubscribe()

        unsubscribe = bus.register("test", once, "sub-1", "scope-1")
        bus.register("test", after, "sub-2", "scope-1")

        bus.dispatch("test", "scope-1")
        bus.dispatch("test", "scope-1")

        assert after.calls == 2
        assert bus.listener_count("test") == 1

    def test_listener_added_mid_dispatch_waits_for_next_dispatch(self):
        bus = ScopedEventBus()
        late = Recorder("late")
        bus.register("test", lambda e: bus.register("test", late, "sub-2", "scope-1"), "sub-1", "scope-1")

        bus.dispatch("test", "scope-1")
        assert late.calls == 0

        bus.dispatch("test", "scope-1")
        assert late.calls == 1

    def test_scope_evicted_mid_dispatch_stops_pattern_delivery(self):
        bus = ScopedEventBus()
        pattern_listener = Recorder()
        bus.register("order-1", lambda e: bus.evict_scope("orders"), "janitor", "orders")
        bus.register(re.compile(r"order-\d+"), pattern_listener, "billing", "orders")

        bus.dispatch("order-1", "orders")

        assert pattern_listener.calls == 0
        assert bus._patterns == {}


class TestDebugCallback:
    """Debug callback and event logging."""

    def test_debug_callback_sees_every_dispatch(self):
        debug = Recorder("debug")
        bus = ScopedEventBus(debug_callback=debug)

        bus.dispatch("test")
        bus.dispatch("test", "scope-1")
        bus.dispatch("other", phase=Phase.BEFORE)

        assert [e.type for e in debug.events] == ["test", "test", "other"]

    def test_log_events_writes_debug_line(self):
        from loguru import logger

        messages = []
        sink_id = logger.add(messages.append, level="DEBUG", format="{message}")
        try:
            bus = ScopedEventBus(log_events=True)
            bus.dispatch("test", "scope-1")
        finally:
            logger.remove(sink_id)

        assert any("Dispatching test (scope=scope-1, phase=after)" in str(m) for m in messages)
