"""
Built-in default categorization rules.

These ship as "default_pattern" rules, so any custom "pattern" rule a user
writes is evaluated first and overrides them. Categories are referenced by
name and resolved to ids when the defaults are imported.
"""

from ledgerlens.rule_engine import RULE_ORDER_STEP, CategorizationRule

DEFAULT_RULE_TYPE = 'default_pattern'

# =============================================================================
# (pattern, category name). Position decides rule_order: (index + 1) * 10
# =============================================================================
DEFAULT_PATTERN_RULES = [
    ('*AMAZON*', 'Shopping'),
    ('*{UBER EATS,DOORDASH,GRUBHUB}*', 'Food Delivery'),
    ('*{LYFT,UBER,WAYMO}*', 'Rideshare'),
    ('*{AIRLINE,JETBLUE,SOUTHWEST}*', 'Airfare'),
    ('*{UNITED.COM,AA.COM,DELTA.COM}*', 'Airfare'),
    ('*LIQUOR*', 'Bars & Clubs'),
    ('*{FITNESS,EQUINOX,GYM}*', 'Gym'),
    ('*{CLIPPER,MTA,MBTA,SEPTA}*', 'Public Transit'),
    ('TST[*]*', 'Food & Drink'),
    ("*{JEWEL OSCO,SAFEWAY,SHAW'S,STAR MARKET,WHOLE FOODS,KROGER,FRED MEYER,GERBES,"
     "HARRIS TEETER,JAYC,PAY LESS,COSTCO,SAM'S CLUB,PUBLIX,WEGMANS,TRADER JOE'S}*", 'Groceries'),
    ('*{PIZZA,SUSHI,BURGER,CHICKEN,ICE CREAM,DINER,TACO,TACQUERIA}*', 'Restaurants'),
    ('* DELI *', 'Restaurants'),
    ("*{IKEA,WAYFAIR,HOME DEPOT,LOWE'S,CRATE & BARREL,CRATE AND BARREL}*", 'Furniture'),
    ('*{STARBUCKS,DUNKIN,CAFE,COFFEE,TIM HORTON}*', 'Cafes'),
]


def default_category_names():
    """Category names the defaults refer to, in first-seen order."""
    names = []
    for _, category_name in DEFAULT_PATTERN_RULES:
        if category_name not in names:
            names.append(category_name)
    return names


def import_default_rules(existing_rules, category_ids_by_name, start_id=None):
    """Build the default rules that are not installed yet.

    Args:
        existing_rules: Rules currently stored
        category_ids_by_name: Mapping of category name -> category id
        start_id: First id to assign (default: one past the highest existing id)

    Returns:
        List of new CategorizationRule objects. Defaults whose pattern already
        exists as a default_pattern rule, or whose category is unknown, are
        skipped.
    """
    existing_rules = list(existing_rules)
    existing_patterns = {r.pattern for r in existing_rules if r.rule_type == DEFAULT_RULE_TYPE}

    if start_id is None:
        start_id = max((r.id for r in existing_rules), default=0) + 1

    imported = []
    for index, (pattern, category_name) in enumerate(DEFAULT_PATTERN_RULES):
        if pattern in existing_patterns:
            continue
        category_id = category_ids_by_name.get(category_name)
        if category_id is None:
            continue

        imported.append(CategorizationRule(
            id=start_id + len(imported),
            rule_type=DEFAULT_RULE_TYPE,
            pattern=pattern,
            category_id=category_id,
            rule_order=(index + 1) * RULE_ORDER_STEP,
        ))
        existing_patterns.add(pattern)

    return imported
