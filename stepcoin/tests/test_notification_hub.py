import pytest

from stepcoin.core.events import NotificationHub, make_event


def test_publish_fans_out_and_buffers():
    hub = NotificationHub(buffer_size=2)
    seen = []
    hub.subscribe(seen.append)

    events = [make_event("streak-milestone", user_id="u1", streak_days=7, amount=100, day=f"2024-06-0{i}") for i in range(1, 4)]
    assert hub.publish(events) == 3

    assert len(seen) == 3
    recent = hub.recent("u1")
    assert [e["payload"]["day"] for e in recent] == ["2024-06-03", "2024-06-02"]


def test_failing_subscriber_does_not_break_delivery():
    hub = NotificationHub()
    seen = []

    def broken(event):
        raise RuntimeError("boom")

    hub.subscribe(broken)
    hub.subscribe(seen.append)
    hub.publish([make_event("tier-advanced", user_id="u1", from_tier=1, to_tier=2, label="Coin Phase", new_rate=2.0)])

    assert len(seen) == 1


def test_unsubscribe_stops_delivery():
    hub = NotificationHub()
    seen = []
    hub.subscribe(seen.append)
    hub.unsubscribe(seen.append)
    hub.publish([make_event("quarter-milestone", user_id="u1", tier=1, quarter=25)])
    assert seen == []
    assert len(hub.recent("u1")) == 1


def test_unknown_event_type_rejected():
    with pytest.raises(ValueError):
        make_event("confetti", user_id="u1")
