from __future__ import annotations

import unittest
from dataclasses import replace

from sheet_resolver.config import ResolverConfig
from sheet_resolver.errors import HeaderNotFoundError
from sheet_resolver.locator import extract_title, find_anchor, identity_start, locate_header
from sheet_resolver.tokenizer import tokenize_numbered


class HeaderLocatorTests(unittest.TestCase):
    def setUp(self):
        self.config = ResolverConfig()

    def test_header_below_blank_preamble(self):
        rows = tokenize_numbered(",,,,\n,,,,\nNAME,VOL_MTD,COMM_MTD\nAlice,100000,25000\n")
        location = locate_header(rows, self.config)
        self.assertEqual(location.row_number, 3)
        self.assertEqual(location.row_index, 0)
        self.assertEqual(location.data_start, 0)
        self.assertEqual(location.headers, ("NAME", "VOL_MTD", "COMM_MTD"))
        self.assertFalse(location.fallback)
        self.assertEqual(location.confidence, 1.0)

    def test_data_start_is_the_anchor_column(self):
        rows = tokenize_numbered(
            "Cebu Matunog Agency,,,\n"
            "REGION,AGENCY_NAME,LEADER_UM_NAME,ANP_MTD\n"
            "Visayas,Cebu Matunog Agency,Maria Santos,1000\n"
        )
        location = locate_header(rows, self.config)
        self.assertEqual(location.data_start, 2)
        self.assertEqual(location.headers, ("LEADER_UM_NAME", "ANP_MTD"))
        self.assertEqual(location.anchor, "name")
        self.assertEqual(location.title, "Cebu Matunog Agency")

    def test_volume_anchor_keeps_the_identity_column_in_range(self):
        rows = tokenize_numbered("REGION,LEADER,VOL_MTD,COMM_MTD\nVisayas,Ana,5000,100\n")
        location = locate_header(rows, self.config)
        self.assertEqual(location.anchor, "vol_mtd")
        self.assertEqual(location.data_start, 1)
        self.assertEqual(location.headers, ("LEADER", "VOL_MTD", "COMM_MTD"))

    def test_identity_start_without_identity_like_header(self):
        cells = ["REGION", "CODE", "VOL_MTD"]
        self.assertEqual(identity_start(cells, 2, "vol_mtd", self.config), 0)
        config = replace(self.config, min_anchor_column=1)
        self.assertEqual(identity_start(cells, 2, "vol_mtd", config), 1)
        self.assertEqual(identity_start(["x", "NAME"], 1, "name", self.config), 1)

    def test_min_anchor_column_skips_early_matches(self):
        config = replace(self.config, min_anchor_column=1)
        self.assertEqual(find_anchor(["NAME", "x", "VOL_MTD"], config), (2, "vol_mtd"))
        self.assertIsNone(find_anchor(["NAME", "x"], config))

    def test_fallback_row_when_no_anchor_in_window(self):
        rows = tokenize_numbered("title\nsub\n\n\nAGENT,SALES\nAna,10\n")
        location = locate_header(rows, self.config)
        self.assertTrue(location.fallback)
        self.assertEqual(location.row_number, 5)
        self.assertEqual(location.confidence, self.config.fallback_confidence)
        self.assertEqual(location.headers, ("AGENT", "SALES"))

    def test_missing_header_and_blank_fallback_raises(self):
        text = "\n" * 49 + "foo,bar\n"
        with self.assertRaises(HeaderNotFoundError):
            locate_header(tokenize_numbered(text), self.config)

    def test_anchor_outside_scan_window_is_not_found(self):
        config = replace(self.config, header_scan_rows=3, fallback_header_row=None)
        rows = tokenize_numbered("a\nb\nc\nd\nNAME,VOL_MTD\n")
        with self.assertRaises(HeaderNotFoundError):
            locate_header(rows, config)

    def test_title_from_agency_name_column(self):
        rows = tokenize_numbered(
            "LEADERS REPORT UM NAME,,\n"
            "AGENCY_NAME,LEADER_UM_NAME,ANP_MTD\n"
            "Golden Agency,Ana,100\n"
        )
        location = locate_header(rows, self.config)
        self.assertEqual(location.data_start, 1)
        self.assertEqual(extract_title(rows, location.row_index, location.data_start), "Golden Agency")


if __name__ == "__main__":
    unittest.main()
