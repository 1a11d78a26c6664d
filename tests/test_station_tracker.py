"""Tests for NearbyStationTracker."""

import sys
import threading
import unittest
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import MagicMock

# Add src to path so we can import rumpytrain
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from rumpytrain.exceptions import FetchError
from rumpytrain.gtfs_loader import StationCatalog
from rumpytrain.models import Arrival, Direction, Route, Station
from rumpytrain.mta_client import MTAClient
from rumpytrain.station_tracker import NearbyStationTracker

NOW = datetime(2025, 3, 5, 12, 0, 0, tzinfo=timezone.utc)
F = Route("F", "F", "FF6319")


def make_catalog() -> StationCatalog:
    stations = [
        Station("101", "Test St", 40.0, -73.0, (F,)),
        Station("102", "Second Av", 40.01, -73.0, (F,)),
        Station("103", "Far Rd", 40.5, -73.0, ()),
    ]
    return StationCatalog(stations, {"F": F})


def arrivals_for(minutes: int, direction=Direction.UPTOWN):
    return {"F": [Arrival(NOW + timedelta(minutes=minutes), direction, True)]}


class TestNearbyStationTracker(unittest.TestCase):
    """Test ranking and background arrival updates."""

    def setUp(self):
        self.client = MagicMock(spec=MTAClient)
        self.client.get_arrivals.return_value = arrivals_for(5)
        self.tracker = NearbyStationTracker(make_catalog(), client=self.client, station_limit=2)

    def tearDown(self):
        self.tracker.close()

    def test_update_location_ranks_nearest(self):
        boards = self.tracker.update_location(40.0, -73.0)

        self.assertEqual([b.station.stop_id for b in boards], ["101", "102"])
        self.assertAlmostEqual(boards[0].distance_m, 0.0)
        self.assertLess(boards[0].distance_m, boards[1].distance_m)

    def test_arrivals_fill_in_after_fetch(self):
        self.tracker.update_location(40.0, -73.0)
        self.assertTrue(self.tracker.wait(timeout=5))

        boards = self.tracker.boards()
        self.assertEqual(boards[0].arrivals, arrivals_for(5))
        self.assertIsNotNone(boards[0].last_updated)
        fetched = {call.args for call in self.client.get_arrivals.call_args_list}
        self.assertEqual(fetched, {("101", Direction.UPTOWN), ("102", Direction.UPTOWN)})

    def test_ranking_does_not_wait_for_arrivals(self):
        release = threading.Event()

        def slow_fetch(station_id, direction):
            release.wait(5)
            return arrivals_for(5)

        self.client.get_arrivals.side_effect = slow_fetch

        boards = self.tracker.update_location(40.0, -73.0)
        self.assertTrue(all(board.arrivals is None for board in boards))

        release.set()
        self.assertTrue(self.tracker.wait(timeout=5))
        self.assertTrue(all(board.arrivals is not None for board in self.tracker.boards()))

    def test_failed_fetch_keeps_previous_snapshot(self):
        self.tracker.update_location(40.0, -73.0)
        self.tracker.wait(timeout=5)

        self.client.get_arrivals.side_effect = FetchError("all feeds down")
        self.tracker.refresh()
        self.tracker.wait(timeout=5)

        self.assertEqual(self.tracker.boards()[0].arrivals, arrivals_for(5))

    def test_refresh_replaces_snapshot(self):
        self.tracker.update_location(40.0, -73.0)
        self.tracker.wait(timeout=5)

        self.client.get_arrivals.return_value = arrivals_for(2)
        self.tracker.refresh()
        self.tracker.wait(timeout=5)

        self.assertEqual(self.tracker.boards()[0].arrivals, arrivals_for(2))

    def test_direction_change_does_not_reuse_other_direction(self):
        self.tracker.update_location(40.0, -73.0)
        self.tracker.wait(timeout=5)

        self.client.get_arrivals.side_effect = FetchError("down")
        boards = self.tracker.update_location(40.0, -73.0, direction=Direction.DOWNTOWN)
        self.tracker.wait(timeout=5)

        self.assertTrue(all(board.arrivals is None for board in self.tracker.boards()))
        self.assertEqual(self.tracker.direction, Direction.DOWNTOWN)
        self.assertEqual(len(boards), 2)

    def test_on_update_callback(self):
        updates = []
        tracker = NearbyStationTracker(
            make_catalog(), client=self.client, station_limit=1, on_update=updates.append
        )
        try:
            tracker.update_location(40.5, -73.0)
            tracker.wait(timeout=5)
        finally:
            tracker.close()

        self.assertEqual(len(updates), 1)
        self.assertEqual(updates[0].station.stop_id, "103")
        self.assertEqual(updates[0].arrivals, arrivals_for(5))

    def test_get_station_by_id_or_name(self):
        self.assertEqual(self.tracker.get_station("102S").stop_id, "102")
        self.assertEqual(self.tracker.get_station("Far").stop_id, "103")
        with self.assertRaises(ValueError):
            self.tracker.get_station("NONEXISTENT")

    def test_get_arrivals_uses_default_direction(self):
        station = self.tracker.get_station("101")
        self.tracker.get_arrivals(station)
        self.client.get_arrivals.assert_called_with("101", Direction.UPTOWN)

    def test_format_board_loading(self):
        release = threading.Event()

        def slow_fetch(station_id, direction):
            release.wait(5)
            return arrivals_for(5)

        self.client.get_arrivals.side_effect = slow_fetch

        board = self.tracker.update_location(40.5, -73.0)[0]
        self.assertEqual(self.tracker.format_board(board), "Far Rd: arrivals loading/unavailable\n")

        release.set()
        self.tracker.wait(timeout=5)
        text = self.tracker.format_board(self.tracker.boards()[0])
        self.assertTrue(text.startswith("Next arrivals for Far Rd:"))
        self.assertIn("F train: ", text)

    def test_format_board_without_arrivals(self):
        self.client.get_arrivals.return_value = {}
        self.tracker.update_location(40.5, -73.0)
        self.tracker.wait(timeout=5)

        board = self.tracker.boards()[0]
        self.assertEqual(board.arrivals, {})
        self.assertEqual(self.tracker.format_board(board), "Far Rd: arrivals loading/unavailable\n")

    def test_older_fetch_does_not_overwrite_newer(self):
        started = threading.Event()
        release = threading.Event()
        updated = threading.Event()
        calls = []

        def fetch(station_id, direction):
            calls.append(station_id)
            if len(calls) == 1:
                started.set()
                release.wait(5)
                return arrivals_for(9)
            return arrivals_for(2)

        self.client.get_arrivals.side_effect = fetch
        tracker = NearbyStationTracker(
            make_catalog(),
            client=self.client,
            station_limit=1,
            max_workers=2,
            on_update=lambda board: updated.set(),
        )
        try:
            tracker.update_location(40.0, -73.0)
            self.assertTrue(started.wait(5))
            tracker.refresh()
            self.assertTrue(updated.wait(5))

            release.set()
            self.assertTrue(tracker.wait(timeout=5))
            self.assertEqual(tracker.boards()[0].arrivals, arrivals_for(2))
        finally:
            release.set()
            tracker.close()

    def test_close_releases_client(self):
        self.tracker.close()
        self.client.close.assert_called_once()


if __name__ == "__main__":
    unittest.main()
