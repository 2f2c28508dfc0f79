from __future__ import annotations

import json
import tempfile
import unittest
from dataclasses import replace
from pathlib import Path

from sheet_resolver.config import (
    DerivedMetric,
    FieldSpec,
    ResolverConfig,
    config_from_dict,
    config_to_dict,
    load_config,
    profile_config,
)
from sheet_resolver.errors import ConfigError


class ConfigTests(unittest.TestCase):
    def test_resolution_order_puts_references_first(self):
        order = [spec.name for spec in ResolverConfig().resolution_order()]
        self.assertEqual(order[:2], ["name", "unit"])
        self.assertLess(order.index("comm_mtd"), order.index("vol_mtd"))
        self.assertLess(order.index("vol_mtd"), order.index("prem_mtd"))
        self.assertLess(order.index("vol_mtd"), order.index("vol_ytd"))
        self.assertLess(order.index("prem_mtd"), order.index("prem_ytd"))

    def test_reference_cycle_is_rejected(self):
        fields = (
            FieldSpec(name="who", kind="identity", aliases=("NAME",)),
            FieldSpec(name="a", aliases=("A",), reference="b"),
            FieldSpec(name="b", aliases=("B",), reference="a"),
        )
        with self.assertRaisesRegex(ConfigError, "Reference cycle"):
            ResolverConfig(fields=fields, derived=(), anchor_fields=("who",))

    def test_load_config_rejects_a_cyclic_field_list(self):
        payload = {
            "fields": [
                {"name": "who", "kind": "identity", "aliases": ["NAME"]},
                {"name": "a", "aliases": ["A"], "reference": "b"},
                {"name": "b", "aliases": ["B"], "reference": "a"},
            ],
            "derived": [],
            "anchor_fields": ["who"],
        }
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "cyclic.json"
            path.write_text(json.dumps(payload), encoding="utf-8")
            with self.assertRaisesRegex(ConfigError, "Reference cycle"):
                load_config(path)

    def test_agents_profile(self):
        config = profile_config("agents")
        self.assertEqual([spec.name for spec in config.fields], ["name", "um_name", "unit", "vol_mtd", "prem_mtd", "cases_mtd"])
        self.assertEqual(config.field("unit").default, "Unknown Unit")
        self.assertEqual(config.field("um_name").default, "Unknown")
        self.assertIn("FYP MTD SP at 10%", config.field("prem_mtd").aliases)
        self.assertEqual(profile_config("leaders"), ResolverConfig())
        with self.assertRaises(ConfigError):
            profile_config("agency")

    def test_profile_key_selects_the_base_vocabulary(self):
        config = config_from_dict({"profile": "agents", "extra_aliases": {"um_name": ["MANAGER"]}})
        self.assertEqual(config.identity_field().aliases[0], "AGENT NAME")
        self.assertIn("MANAGER", config.field("um_name").aliases)
        with self.assertRaises(ConfigError):
            config_from_dict({"profile": "agency"})

    def test_validation_errors(self):
        with self.assertRaises(ConfigError):
            ResolverConfig(epsilon=0)
        with self.assertRaises(ConfigError):
            ResolverConfig(anchor_fields=("missing",))
        with self.assertRaises(ConfigError):
            ResolverConfig(derived=(DerivedMetric(name="x", op="sum", inputs=("vol_mtd",)),))
        with self.assertRaises(ConfigError):
            ResolverConfig(adopt_floor=0.9, override_confidence=0.5)
        with self.assertRaises(ConfigError):
            replace(ResolverConfig(), delimiter=";;")

    def test_config_from_dict_overrides_and_extends(self):
        config = config_from_dict(
            {
                "epsilon": 5,
                "header_words": ["seq"],
                "extra_aliases": {"unit": ["SQUAD"]},
            }
        )
        self.assertEqual(config.epsilon, 5)
        self.assertEqual(config.header_words, ("seq",))
        self.assertIn("SQUAD", config.field("unit").aliases)
        self.assertEqual(config.field("unit").aliases[0], "UNIT")

    def test_unknown_keys_are_rejected(self):
        with self.assertRaises(ConfigError):
            config_from_dict({"epsilonn": 1})
        with self.assertRaises(ConfigError):
            config_from_dict({"extra_aliases": {"nope": ["X"]}})
        with self.assertRaises(ConfigError):
            config_from_dict({"fields": [{"name": "x", "aliases": ["X"], "colour": "red"}]})

    def test_round_trip_through_json(self):
        payload = config_to_dict(ResolverConfig())
        self.assertEqual(config_from_dict(json.loads(json.dumps(payload))), ResolverConfig())

    def test_load_config(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "resolver.json"
            path.write_text(json.dumps({"sample_size": 10, "delimiter": None}), encoding="utf-8")
            config = load_config(path)
            self.assertEqual(config.sample_size, 10)
            self.assertIsNone(config.delimiter)

            yaml_path = Path(tmpdir) / "resolver.yml"
            yaml_path.write_text("sample_size: 10\n", encoding="utf-8")
            with self.assertRaisesRegex(ConfigError, "YAML configs are not supported yet"):
                load_config(yaml_path)

            list_path = Path(tmpdir) / "list.json"
            list_path.write_text("[]", encoding="utf-8")
            with self.assertRaises(ConfigError):
                load_config(list_path)

        with self.assertRaises(ConfigError):
            load_config(Path("does-not-exist.json"))


if __name__ == "__main__":
    unittest.main()
