import asyncio

import pytest

from docintake.services.events import EventBroker


def test_publish_order_and_unsubscribe():
    broker = EventBroker()
    seen = []
    unsubscribe = broker.subscribe("job:1", seen.append)

    for n in range(3):
        broker.publish("job:1", {"n": n})
    unsubscribe()
    broker.publish("job:1", {"n": 3})

    assert [e["n"] for e in seen] == [0, 1, 2]
    assert broker.subscriber_count("job:1") == 0


def test_failing_subscriber_is_isolated():
    broker = EventBroker()
    seen = []

    def broken(event):
        raise RuntimeError("listener crashed")

    broker.subscribe("batches", broken)
    broker.subscribe("batches", seen.append)

    assert broker.publish("batches", {"batchId": "b1"}) == 1
    assert seen == [{"batchId": "b1"}]


def test_publish_without_subscribers():
    assert EventBroker().publish("job:none", {}) == 0


@pytest.mark.asyncio
async def test_stream_yields_published_events():
    broker = EventBroker()
    received = []

    async def consume():
        events = broker.stream("batch:b1")
        try:
            async for event in events:
                received.append(event)
                if len(received) == 2:
                    break
        finally:
            await events.aclose()

    task = asyncio.create_task(consume())
    while broker.subscriber_count("batch:b1") == 0:
        await asyncio.sleep(0)
    broker.publish("batch:b1", {"status": "scanning"})
    broker.publish("batch:b1", {"status": "indexing"})
    await asyncio.wait_for(task, 1)

    assert [e["status"] for e in received] == ["scanning", "indexing"]
    assert broker.subscriber_count("batch:b1") == 0
