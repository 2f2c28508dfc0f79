from __future__ import annotations

import unittest

from sheet_resolver.config import ResolverConfig
from sheet_resolver.fields import (
    foreign_owner,
    locate_field,
    looks_like_identity,
    marker_conflict,
    matches_alias,
    normalize_header,
)


class FieldLocatorTests(unittest.TestCase):
    def setUp(self):
        self.config = ResolverConfig()
        self.vol = self.config.field("vol_mtd")

    def test_normalize_header_treats_separators_alike(self):
        self.assertEqual(normalize_header("  Vol_MTD. "), "vol mtd")
        self.assertEqual(normalize_header("VOL - MTD"), "vol mtd")
        self.assertEqual(normalize_header("vol   mtd:"), "vol mtd")
        self.assertEqual(normalize_header(None), "")

    def test_matches_alias_is_case_and_whitespace_insensitive(self):
        self.assertTrue(matches_alias("anp mtd", self.vol))
        self.assertTrue(matches_alias(" Anp-Mtd ", self.vol))
        self.assertFalse(matches_alias("ANP YTD", self.vol))
        self.assertFalse(matches_alias("", self.vol))

    def test_locate_field_uses_alias_order_then_leftmost_column(self):
        headers = ["NAME", "ANP", "VOL_MTD", "VOL_MTD"]
        self.assertEqual(locate_field(headers, self.vol), (2, "VOL_MTD"))
        self.assertEqual(locate_field(headers, self.vol, claimed={2}), (3, "VOL_MTD"))

    def test_locate_field_returns_none_without_match(self):
        self.assertIsNone(locate_field(["NAME", "", "COMM_MTD"], self.vol))

    def test_foreign_owner_blocks_other_field_vocabulary(self):
        fields = self.config.fields
        self.assertEqual(foreign_owner("FYC_MTD", self.vol, fields), "comm_mtd")
        self.assertEqual(foreign_owner("FYC Bonus", self.vol, fields), "comm_mtd")
        self.assertEqual(foreign_owner("ANP_YTD", self.vol, fields), "vol_ytd")
        self.assertIsNone(foreign_owner("", self.vol, fields))
        self.assertIsNone(foreign_owner("Production", self.vol, fields))

    def test_marker_conflict_ignores_shared_family_markers(self):
        self.assertIsNone(marker_conflict("ANP Q4", self.vol, self.config.fields))

    def test_looks_like_identity(self):
        identity = self.config.identity_field()
        self.assertTrue(looks_like_identity("LEADER_UM_NAME", identity))
        self.assertTrue(looks_like_identity("Agent Code", identity))
        self.assertFalse(looks_like_identity("UNIT", identity))


if __name__ == "__main__":
    unittest.main()
