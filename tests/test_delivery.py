import threading

import pytest

from mediashelf.library.delivery import Delivery, DeliveryKind, DeliveryQueue


def test_drain_dispatches_in_fifo_order():
    queue = DeliveryQueue()
    seen = []
    queue.register(DeliveryKind.PAGE, lambda d: seen.append(('page', d.payload)))
    queue.register(DeliveryKind.COUNTS, lambda d: seen.append(('counts', d.payload)))

    queue.post(Delivery(DeliveryKind.PAGE, payload=1))
    queue.post(Delivery(DeliveryKind.COUNTS, payload=2))
    queue.post(Delivery(DeliveryKind.PAGE, payload=3))

    assert queue.drain() == 3
    assert seen == [('page', 1), ('counts', 2), ('page', 3)]
    assert len(queue) == 0


def test_unhandled_kinds_are_dropped():
    queue = DeliveryQueue()
    queue.post(Delivery(DeliveryKind.THUMBNAIL))

    assert queue.drain() == 0
    assert len(queue) == 0


def test_follow_up_posts_are_drained_in_the_same_call():
    queue = DeliveryQueue()
    seen = []

    def on_scan_done(delivery):
        seen.append('scan')
        queue.post(Delivery(DeliveryKind.COUNTS))

    queue.register(DeliveryKind.SCAN_DONE, on_scan_done)
    queue.register(DeliveryKind.COUNTS, lambda d: seen.append('counts'))
    queue.post(Delivery(DeliveryKind.SCAN_DONE))

    assert queue.drain() == 2
    assert seen == ['scan', 'counts']


def test_discard_only_drops_named_kinds():
    queue = DeliveryQueue()
    queue.post(Delivery(DeliveryKind.PAGE))
    queue.post(Delivery(DeliveryKind.SCAN_PROGRESS, payload='/lib'))
    queue.post(Delivery(DeliveryKind.COUNTS))

    assert queue.discard([DeliveryKind.PAGE, DeliveryKind.COUNTS]) == 2
    assert [d.kind for d in queue.take_all()] == [DeliveryKind.SCAN_PROGRESS]


def test_post_from_worker_thread():
    queue = DeliveryQueue()
    seen = []
    queue.register(DeliveryKind.APPLY_DONE, lambda d: seen.append(d.payload))

    workers = [
        threading.Thread(target=queue.post, args=(Delivery(DeliveryKind.APPLY_DONE, payload=i),))
        for i in range(20)
    ]
    for worker in workers:
        worker.start()
    for worker in workers:
        worker.join()

    assert queue.drain() == 20
    assert sorted(seen) == list(range(20))


def test_drain_off_owner_thread_is_rejected():
    queue = DeliveryQueue()
    queue.post(Delivery(DeliveryKind.PAGE))
    errors = []

    def drain():
        try:
            queue.drain()
        except RuntimeError as e:
            errors.append(e)

    worker = threading.Thread(target=drain)
    worker.start()
    worker.join()

    assert len(errors) == 1
    assert len(queue) == 1


def test_handler_errors_propagate():
    queue = DeliveryQueue()

    def broken(delivery):
        raise ValueError('bad payload')

    queue.register(DeliveryKind.PAGE, broken)
    queue.post(Delivery(DeliveryKind.PAGE))

    with pytest.raises(ValueError):
        queue.drain()
