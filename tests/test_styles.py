import re
from pathlib import Path


def test_budget_status_bars_have_distinct_colors() -> None:
    css = Path("static/css/main.css").read_text(encoding="utf-8")

    colors = {}
    for status in ("on_track", "warning", "critical"):
        rule = re.search(rf"\.status-{status}\s+\.fill\s*\{{([^}}]*)\}}", css)
        assert rule, f"Expected a `.status-{status} .fill` rule in main.css"
        colors[status] = rule.group(1).strip()
    assert len(set(colors.values())) == 3


def test_every_expense_category_has_a_color() -> None:
    css = Path("static/css/main.css").read_text(encoding="utf-8")
    for category in (
        "food",
        "transportation",
        "entertainment",
        "utilities",
        "shopping",
        "healthcare",
        "other",
    ):
        assert f".cat-{category} {{" in css
