from __future__ import annotations

import unittest

from sheet_resolver.config import ResolverConfig
from sheet_resolver.rows import (
    AGGREGATE,
    BLANK,
    DATA,
    REPEATED_HEADER,
    classify_row,
    header_signature,
    slice_row,
    total_label_re,
)


class RowClassifierTests(unittest.TestCase):
    def setUp(self):
        self.config = ResolverConfig()
        self.headers = ["LEADER_UM_NAME", "UNIT", "", "ANP_YTD", "FYC_MTD"]
        self.signature = header_signature(self.headers)

    def classify(self, cells):
        return classify_row(cells, self.signature, self.config)

    def test_blank_row(self):
        self.assertEqual(self.classify(["", " ", "", "", ""]), BLANK)

    def test_exact_header_repeat(self):
        self.assertEqual(self.classify(["leader_um_name", "Unit", "", "ANP YTD", "FYC MTD"]), REPEATED_HEADER)

    def test_partial_header_repeat_at_half_of_cells(self):
        self.assertEqual(self.classify(["x", "UNIT", "", "ANP_YTD", "5"]), REPEATED_HEADER)
        self.assertEqual(self.classify(["Ana", "UNIT", "", "100", "5"]), DATA)

    def test_header_word_in_first_cell(self):
        self.assertEqual(self.classify(["No.", "", "", "", ""]), REPEATED_HEADER)
        self.assertEqual(self.classify(["LEADER_UM_NAME (cont.)", "", "", "", ""]), REPEATED_HEADER)

    def test_total_rows_are_aggregates(self):
        self.assertEqual(self.classify(["TOTAL", "", "100", "", ""]), AGGREGATE)
        self.assertEqual(self.classify(["Grand  Total", "", "100", "", ""]), AGGREGATE)
        self.assertEqual(self.classify(["Subtotal Unit A", "", "100", "", ""]), AGGREGATE)

    def test_names_that_contain_total_words_are_data(self):
        self.assertEqual(self.classify(["Totalia Cruz", "Unit A", "100", "", ""]), DATA)

    def test_slice_row_pads_and_cuts(self):
        self.assertEqual(slice_row(["a", "b", "c"], 1, 4), ["b", "c", "", ""])
        self.assertEqual(slice_row(["a", "b", "c", "d"], 1, 2), ["b", "c"])

    def test_total_label_re_matches_whole_words(self):
        pattern = total_label_re(("grand total", "total"))
        self.assertTrue(pattern.match("GRAND TOTAL:"))
        self.assertFalse(pattern.match("totality"))


if __name__ == "__main__":
    unittest.main()
