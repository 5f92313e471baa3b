from events import EventBus, listing_paths, revalidate


def test_listing_paths_per_type():
    assert listing_paths("product") == ["/marketplace", "/marketplace/my-listings"]
    assert listing_paths("accommodation") == ["/accommodation", "/accommodation/my-listings"]
    assert listing_paths("service") == ["/service", "/service/my-listings"]


def test_unsubscribed_listener_stops_receiving():
    bus = EventBus()
    seen = []
    listener = bus.subscribe("/marketplace", lambda name, payload: seen.append(payload))

    assert bus.publish("/marketplace", 1) == 1
    listener.unsubscribe()
    listener.unsubscribe()
    assert bus.publish("/marketplace", 2) == 0
    assert seen == [1]


def test_failing_listener_does_not_block_others():
    bus = EventBus()
    seen = []

    def broken(name, payload):
        raise RuntimeError("view crashed")

    bus.subscribe("/service", broken)
    bus.subscribe("/service", lambda name, payload: seen.append(name))

    revalidate(bus, "/service")
    assert seen == ["/service"]


def test_revalidate_without_bus_is_a_no_op():
    revalidate(None, "/marketplace")
