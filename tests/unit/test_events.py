"""Tests for the event bus."""

from unittest.mock import Mock

from dispatchbulk.events import EventBus, RecordingEventBus


class TestEventBus:
    """Test cases for EventBus class."""

    def test_handlers_called_in_order(self):
        bus = EventBus()
        calls = []
        bus.subscribe("routes-updated", lambda event, payload: calls.append(("first", payload)))
        bus.subscribe("routes-updated", lambda event, payload: calls.append(("second", payload)))

        bus.emit("routes-updated", {"processed": 3})

        assert calls == [("first", {"processed": 3}), ("second", {"processed": 3})]

    def test_wildcard_receives_everything(self):
        bus = EventBus()
        handler = Mock()
        bus.subscribe("*", handler)

        bus.emit("staff-updated", 1)
        bus.emit("assets-updated")

        assert [c.args for c in handler.call_args_list] == [("staff-updated", 1), ("assets-updated", None)]

    def test_failing_handler_is_isolated(self, caplog):
        """Test that a raising handler does not stop delivery or raise."""
        bus = EventBus()
        survivor = Mock()
        bus.subscribe("operation-failed", Mock(side_effect=RuntimeError("listener down")))
        bus.subscribe("operation-failed", survivor)

        bus.emit("operation-failed", {"id": "operation_1"})

        survivor.assert_called_once_with("operation-failed", {"id": "operation_1"})
        assert "listener down" in caplog.text

    def test_unsubscribe(self):
        bus = EventBus()
        handler = Mock()
        bus.subscribe("template-created", handler)

        assert bus.unsubscribe("template-created", handler) is True
        assert bus.unsubscribe("template-created", handler) is False
        bus.emit("template-created", {})
        handler.assert_not_called()

    def test_emit_without_handlers(self):
        EventBus().emit("nothing-listens")


class TestRecordingEventBus:
    def test_records_and_delivers(self):
        bus = RecordingEventBus()
        handler = Mock()
        bus.subscribe("routes-updated", handler)

        bus.emit("routes-updated", {"date": "2024-09-03"})
        bus.emit("assignments-updated")

        assert bus.names() == ["routes-updated", "assignments-updated"]
        assert bus.events[0] == ("routes-updated", {"date": "2024-09-03"})
        handler.assert_called_once()
