"""Tests for agreements/disputes.py -- settlement split + dispute records."""

import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

import unittest
from agreements.db import Database
from agreements.disputes import DisputeStore, split_refund


class TestSplitRefund(unittest.TestCase):
    def test_zero_pct_all_to_provider(self):
        self.assertEqual(split_refund(1000, 0), (0, 1000))

    def test_full_pct_all_to_client(self):
        self.assertEqual(split_refund(1000, 100), (1000, 0))

    def test_half(self):
        self.assertEqual(split_refund(1000, 50), (500, 500))

    def test_floor_remainder_goes_to_provider(self):
        # 999 * 33 / 100 = 329.67 -> client 329, provider 670
        self.assertEqual(split_refund(999, 33), (329, 670))

    def test_legs_always_sum_to_escrow(self):
        for escrow in (0, 1, 7, 99, 101, 12345):
            for pct in range(0, 101):
                refund, provider = split_refund(escrow, pct)
                self.assertEqual(refund + provider, escrow)
                self.assertGreaterEqual(refund, 0)
                self.assertGreaterEqual(provider, 0)

    def test_empty_escrow(self):
        self.assertEqual(split_refund(0, 40), (0, 0))

    def test_pct_out_of_range(self):
        with self.assertRaises(ValueError):
            split_refund(100, 101)
        with self.assertRaises(ValueError):
            split_refund(100, -1)


class TestDisputeStore(unittest.TestCase):
    def setUp(self):
        self.store = DisputeStore(Database(":memory:"))

    def test_get_missing(self):
        self.assertIsNone(self.store.get(1))

    def test_file_and_get(self):
        self.store.file(1, "late delivery", "client_alice", now=10)
        d = self.store.get(1)
        self.assertEqual(d.reason, "late delivery")
        self.assertEqual(d.initiator, "client_alice")
        self.assertIsNone(d.resolution)
        self.assertFalse(d.resolved)

    def test_refile_overwrites(self):
        self.store.file(1, "first", "client_alice", now=10)
        self.store.resolve(1, "settled", 50, now=11)
        self.store.file(1, "second", "provider_bob", now=12)
        d = self.store.get(1)
        self.assertEqual(d.reason, "second")
        self.assertEqual(d.initiator, "provider_bob")
        self.assertIsNone(d.resolution)
        self.assertIsNone(d.client_refund_pct)
        self.assertEqual(d.created_at, 12)

    def test_resolve_sets_once(self):
        self.store.file(1, "reason", "client_alice", now=10)
        self.assertTrue(self.store.resolve(1, "split", 30, now=20))
        self.assertFalse(self.store.resolve(1, "again", 70, now=21))
        d = self.store.get(1)
        self.assertEqual(d.resolution, "split")
        self.assertEqual(d.client_refund_pct, 30)
        self.assertEqual(d.resolved_at, 20)

    def test_resolve_missing(self):
        self.assertFalse(self.store.resolve(99, "nothing", 0, now=1))

    def test_disputes_keyed_per_agreement(self):
        self.store.file(1, "a", "x", now=1)
        self.store.file(2, "b", "y", now=2)
        self.assertEqual(self.store.get(1).reason, "a")
        self.assertEqual(self.store.get(2).reason, "b")


if __name__ == "__main__":
    unittest.main()
