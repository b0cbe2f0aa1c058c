import unittest

from pqc_tui.ui_utils import display_width, ellipsize, truncate_to_width


class TestWidths(unittest.TestCase):
    def test_wide_and_zero_width(self):
        self.assertEqual(display_width("ab"), 2)
        self.assertEqual(display_width("日本"), 4)
        self.assertEqual(display_width("a\u200bb"), 2)

    def test_truncate_never_splits_wide_char(self):
        self.assertEqual(truncate_to_width("日本語", 3), "日")
        self.assertEqual(truncate_to_width("abc", 0), "")

    def test_ellipsize(self):
        self.assertEqual(ellipsize("hello", 10), "hello")
        self.assertEqual(ellipsize("hello", 4), "hel…")
        self.assertEqual(ellipsize("hello", 1), "…")


if __name__ == "__main__":
    unittest.main()
