from __future__ import annotations

from enum import Enum


class Category(str, Enum):
    HOUSING = "housing"
    TRANSPORTATION = "transportation"
    FOOD = "food"
    UTILITIES = "utilities"
    HEALTHCARE = "healthcare"
    ENTERTAINMENT = "entertainment"
    SHOPPING = "shopping"
    PERSONAL = "personal"
    EDUCATION = "education"
    TRAVEL = "travel"
    OTHER = "other"


CATEGORY_COLORS: dict[Category, str] = {
    Category.HOUSING: "#3b82f6",
    Category.TRANSPORTATION: "#10b981",
    Category.FOOD: "#f59e0b",
    Category.UTILITIES: "#8b5cf6",
    Category.HEALTHCARE: "#ef4444",
    Category.ENTERTAINMENT: "#ec4899",
    Category.SHOPPING: "#0ea5e9",
    Category.PERSONAL: "#6366f1",
    Category.EDUCATION: "#14b8a6",
    Category.TRAVEL: "#f97316",
    Category.OTHER: "#6b7280",
}

CATEGORY_ICONS: dict[Category, str] = {
    Category.HOUSING: "Home",
    Category.TRANSPORTATION: "Car",
    Category.FOOD: "UtensilsCrossed",
    Category.UTILITIES: "Lightbulb",
    Category.HEALTHCARE: "Heart",
    Category.ENTERTAINMENT: "Music",
    Category.SHOPPING: "ShoppingBag",
    Category.PERSONAL: "User",
    Category.EDUCATION: "GraduationCap",
    Category.TRAVEL: "Plane",
    Category.OTHER: "MoreHorizontal",
}


def _check_exhaustive(table: dict[Category, str], name: str) -> None:
    missing = [member.value for member in Category if member not in table]
    if missing:
        raise RuntimeError(f"{name} is missing entries for: {', '.join(missing)}")


_check_exhaustive(CATEGORY_COLORS, "CATEGORY_COLORS")
_check_exhaustive(CATEGORY_ICONS, "CATEGORY_ICONS")


def parse_category(value: Category | str) -> Category:
    if isinstance(value, Category):
        return value
    normalized = value.strip().lower()
    try:
        return Category(normalized)
    except ValueError as exc:
        raise ValueError("Invalid category.") from exc


def category_color(category: Category) -> str:
    return CATEGORY_COLORS[category]


def category_icon(category: Category) -> str:
    return CATEGORY_ICONS[category]
