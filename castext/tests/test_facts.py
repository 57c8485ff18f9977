"""Tests for fact sheets and [[facts:KEY]] tags."""

import unittest

from castext import CASText
from castext.facts import FactSheet, FactSheets, render_fact_sheet


class FactSheetRegistryTestCase(unittest.TestCase):
    def test_builtin_sheets_registered(self):
        keys = FactSheets.list_registered()
        for key in ("calc_diff_linearity_rule", "calc_product_rule", "calc_chain_rule"):
            self.assertIn(key, keys)

    def test_unknown_key(self):
        self.assertIsNone(FactSheets.lookup("no_such_sheet"))

    def test_register_decorator(self):
        @FactSheets.register("test_commutativity")
        def commutativity():
            return FactSheet(name="Commutativity", body=r"\(a+b=b+a\)")

        try:
            self.assertEqual(FactSheets.lookup("test_commutativity").name, "Commutativity")
        finally:
            FactSheets._registry.pop("test_commutativity", None)


class RenderFactSheetTestCase(unittest.TestCase):
    def test_name_escaped_body_trusted(self):
        html = render_fact_sheet(FactSheet(name="<i>Rule</i>", body="<p>ok</p>"))
        self.assertEqual(
            html, '<div class="factsheet"><h5>&lt;i&gt;Rule&lt;/i&gt;</h5><p>ok</p></div>'
        )


class FactsTagTestCase(unittest.TestCase):
    def test_builtin_sheet(self):
        ct = CASText("[[facts:calc_diff_linearity_rule]]")
        self.assertTrue(ct.valid)
        self.assertIn("The Linearity Rule for Differentiation", ct.display)
        self.assertTrue(ct.display.startswith('<div class="factsheet">'))

    def test_unknown_sheet(self):
        ct = CASText("Before [[facts:calc_nonsense]] after")
        self.assertFalse(ct.valid)
        self.assertEqual(ct.display, "Before  after")
        self.assertEqual(ct.errors, ["The fact sheet calc_nonsense does not exist."])

    def test_custom_provider(self):
        class Provider:
            def lookup(self, key):
                if key == "local":
                    return FactSheet(name="Local", body="local body")
                return None

        ct = CASText("[[facts:local]]", fact_sheets=Provider())
        self.assertTrue(ct.valid)
        self.assertIn("local body", ct.display)
        self.assertFalse(CASText("[[facts:calc_chain_rule]]", fact_sheets=Provider()).valid)

    def test_sheet_inside_if(self):
        ct = CASText('[[ if test="false" ]][[facts:calc_chain_rule]][[/ if ]]')
        self.assertTrue(ct.valid)
        self.assertEqual(ct.display, "")
