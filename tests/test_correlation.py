"""Tests for event correlation."""

import threading
import unittest

from assetcompute import ProtocolViolationError, RenditionEvent, RenditionEventType
from assetcompute._correlation import (
    CLIENT_METADATA_KEY,
    PendingWorkCounter,
    RequestRecord,
    get_client_id,
    stamp_renditions,
    stamp_user_data,
)


def make_event(request_id="req-1", index=0, length=2, type_="rendition_created", client_id="client-1", **rendition):
    metadata = {}
    if index is not None:
        metadata["index"] = index
    if length is not None:
        metadata["length"] = length
    return RenditionEvent(raw={
        "type": type_,
        "requestId": request_id,
        "userData": {CLIENT_METADATA_KEY: {"id": client_id}},
        "rendition": {"fmt": "png", **rendition, "userData": {CLIENT_METADATA_KEY: metadata}},
    })


class TestStamping(unittest.TestCase):
    """Tests for the outgoing correlation metadata."""

    def test_stamp_renditions(self):
        renditions = [{"fmt": "png"}, {"fmt": "jpg", "userData": {"mine": True}}]

        stamped = stamp_renditions(renditions)

        self.assertEqual(stamped[0], {"fmt": "png", "userData": {CLIENT_METADATA_KEY: {"index": 0, "length": 2}}})
        self.assertEqual(stamped[1]["userData"], {"mine": True, CLIENT_METADATA_KEY: {"index": 1, "length": 2}})

    def test_stamp_renditions_does_not_mutate_input(self):
        renditions = [{"fmt": "jpg", "userData": {"mine": True}}]

        stamp_renditions(renditions)

        self.assertEqual(renditions, [{"fmt": "jpg", "userData": {"mine": True}}])

    def test_stamp_user_data(self):
        user_data = {"key": "value"}

        stamped = stamp_user_data(user_data, "client-1")

        self.assertEqual(stamped, {"key": "value", CLIENT_METADATA_KEY: {"id": "client-1"}})
        self.assertEqual(user_data, {"key": "value"})

    def test_stamp_empty_user_data(self):
        self.assertEqual(stamp_user_data(None, "c"), {CLIENT_METADATA_KEY: {"id": "c"}})

    def test_get_client_id(self):
        self.assertEqual(get_client_id({"userData": stamp_user_data(None, "c")}), "c")
        self.assertIsNone(get_client_id({}))
        self.assertIsNone(get_client_id({"userData": "x"}))
        self.assertIsNone(get_client_id({"userData": {CLIENT_METADATA_KEY: 1}}))
        self.assertIsNone(get_client_id(None))


class TestRenditionEvent(unittest.TestCase):
    """Tests for RenditionEvent."""

    def test_properties(self):
        event = make_event(type_="rendition_failed")

        self.assertEqual(event.type, RenditionEventType.FAILED)
        self.assertTrue(event.is_failure())
        self.assertEqual(event.request_id, "req-1")
        self.assertEqual(event.client_id, "client-1")
        self.assertEqual(event.rendition["fmt"], "png")

    def test_unknown_type(self):
        self.assertIsNone(make_event(type_="something_else").type)

    def test_correlation(self):
        self.assertEqual(make_event(index=1, length=3).correlation(), (1, 3))

    def test_missing_metadata(self):
        event = RenditionEvent(raw={"type": "rendition_created", "requestId": "req-1", "rendition": {}})

        with self.assertRaises(ProtocolViolationError) as ctx:
            event.correlation()

        self.assertTrue(str(ctx.exception).startswith("Request req-1, expect userData with rendition: "))
        self.assertEqual(ctx.exception.request_id, "req-1")

    def test_missing_index(self):
        with self.assertRaises(ProtocolViolationError) as ctx:
            make_event(index=None).correlation()

        self.assertIn("expect index with rendition", str(ctx.exception))

    def test_missing_length(self):
        with self.assertRaises(ProtocolViolationError) as ctx:
            make_event(length=None).correlation()

        self.assertIn("expect length with rendition", str(ctx.exception))

    def test_non_integer_values(self):
        for index, length in (("0", 2), (True, 2), (0, 2.0), (0, False)):
            with self.subTest(index=index, length=length):
                with self.assertRaises(ProtocolViolationError):
                    make_event(index=index, length=length).correlation()

    def test_out_of_range(self):
        for index, length in ((2, 2), (-1, 2), (0, 0)):
            with self.subTest(index=index, length=length):
                with self.assertRaises(ProtocolViolationError):
                    make_event(index=index, length=length).correlation()


class TestRequestRecord(unittest.TestCase):
    """Tests for RequestRecord."""

    def test_out_of_order_events_are_ordered(self):
        record = RequestRecord("req-1", 3)
        second, third, first = make_event(index=1, length=3), make_event(index=2, length=3), make_event(index=0, length=3)

        self.assertFalse(record.fill(second))
        self.assertFalse(record.fill(third))
        self.assertTrue(record.fill(first))

        self.assertTrue(record.is_complete())
        self.assertEqual(record.events(), [first, second, third])

    def test_duplicate_index(self):
        record = RequestRecord("req-1", 2)
        record.fill(make_event(index=0))

        with self.assertRaises(ProtocolViolationError) as ctx:
            record.fill(make_event(index=0, type_="rendition_failed"))

        self.assertIn("Request req-1, duplicate event: ", str(ctx.exception))
        self.assertIn(", previous: ", str(ctx.exception))
        self.assertEqual(record.remaining, 1)

    def test_length_mismatch(self):
        record = RequestRecord("req-1", 2)

        with self.assertRaises(ProtocolViolationError) as ctx:
            record.fill(make_event(index=0, length=3))

        self.assertIn("expect length 2 with rendition", str(ctx.exception))

    def test_events_before_completion(self):
        record = RequestRecord("req-1", 2)
        record.fill(make_event(index=0))

        with self.assertRaises(AssertionError):
            record.events()

    def test_requires_positive_count(self):
        with self.assertRaises(AssertionError):
            RequestRecord("req-1", 0)


class TestPendingWorkCounter(unittest.TestCase):
    """Tests for PendingWorkCounter."""

    def test_add_and_complete(self):
        counter = PendingWorkCounter()

        self.assertEqual(counter.add(3), 3)
        self.assertEqual(counter.complete_one(), 2)
        self.assertEqual(counter.subtract(2), 0)
        self.assertEqual(counter.value, 0)

    def test_underflow_is_reported_as_negative(self):
        counter = PendingWorkCounter()

        self.assertEqual(counter.complete_one(), -1)

    def test_reset(self):
        counter = PendingWorkCounter()
        counter.add(5)

        self.assertEqual(counter.reset(), 5)
        self.assertEqual(counter.value, 0)

    def test_concurrent_updates(self):
        counter = PendingWorkCounter()
        counter.add(1000)

        def complete(n):
            for _ in range(n):
                counter.complete_one()

        threads = [threading.Thread(target=complete, args=(250,)) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(counter.value, 0)
