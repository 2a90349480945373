import unittest

from spendwise.categories import (
    CATEGORY_COLORS,
    CATEGORY_ICONS,
    Category,
    category_color,
    category_icon,
    parse_category,
)


class CategoryTests(unittest.TestCase):
    def test_every_category_has_color_and_icon(self) -> None:
        self.assertEqual(len(Category), 11)
        self.assertEqual(set(CATEGORY_COLORS), set(Category))
        self.assertEqual(set(CATEGORY_ICONS), set(Category))

    def test_lookups(self) -> None:
        self.assertEqual(category_color(Category.HEALTHCARE), "#ef4444")
        self.assertEqual(category_icon(Category.TRAVEL), "Plane")

    def test_parse_category_normalizes_text(self) -> None:
        self.assertIs(parse_category(" Food "), Category.FOOD)
        self.assertIs(parse_category(Category.OTHER), Category.OTHER)

    def test_parse_category_rejects_unknown(self) -> None:
        with self.assertRaises(ValueError):
            parse_category("groceries")


if __name__ == "__main__":
    unittest.main()
