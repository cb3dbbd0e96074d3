"""
Unit Tests for Specified-Line Segmentation
"""

import unittest

from treatment_lines.aggregation import aggregate_same_date
from treatment_lines.segmentation import SegmenterState, assign_specified_lines

from tests.fixtures import events_frame, specified, unspecified


def _records(rows):
    records, _ = aggregate_same_date(events_frame(rows), drug_group_count=147)
    return records


class TestSegmenterState(unittest.TestCase):
    """Test the set-comparison fold"""

    def test_first_set_starts_line_one(self):
        state = SegmenterState()
        self.assertEqual(state.advance(frozenset({3, 9})), 1)

    def test_order_is_irrelevant(self):
        state = SegmenterState()
        state.advance(frozenset([9, 3]))
        self.assertEqual(state.advance(frozenset([3, 9])), 1)

    def test_adding_or_removing_a_group_starts_new_line(self):
        state = SegmenterState()
        state.advance(frozenset({3}))
        self.assertEqual(state.advance(frozenset({3, 9})), 2)
        self.assertEqual(state.advance(frozenset({9})), 3)


class TestAssignSpecifiedLines(unittest.TestCase):
    """Test tagging of specified DayRecords"""

    def test_same_set_single_line(self):
        """Test {3,9} on day 1 and day 10 gives one specified line"""
        records = _records([
            specified(1, 3, "Chemo"), specified(1, 9, "TKI"),
            specified(10, 3, "Chemo"), specified(10, 9, "TKI"),
        ])
        self.assertEqual(assign_specified_lines(records), 1)
        self.assertEqual([r.specified_line for r in records], [1, 1])

    def test_shrinking_set_two_lines(self):
        """Test {3,9} on day 1 then {3} on day 10 gives two specified lines"""
        records = _records([
            specified(1, 3, "Chemo"), specified(1, 9, "TKI"),
            specified(10, 3, "Chemo"),
        ])
        self.assertEqual(assign_specified_lines(records), 2)
        self.assertEqual([r.specified_line for r in records], [1, 2])

    def test_unspecified_records_skipped(self):
        """Test unspecified records stay untagged and do not reset the set"""
        records = _records([
            specified(1, 3, "Chemo"),
            unspecified(5, "Chemo+TKI"),
            specified(10, 3, "Chemo"),
        ])
        self.assertEqual(assign_specified_lines(records), 1)
        self.assertEqual([r.specified_line for r in records], [1, None, 1])

    def test_no_records(self):
        self.assertEqual(assign_specified_lines([]), 0)


if __name__ == '__main__':
    unittest.main()
