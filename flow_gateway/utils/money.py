"""Minor-unit money formatting"""


def format_amount(amount_cents: int, currency: str = "MYR") -> str:
    """
    Render cents for user-facing strings.

    Example:
        format_amount(5000) -> "RM50.00"
        format_amount(1250, "USD") -> "USD12.50"
    """
    prefix = "RM" if currency == "MYR" else currency
    return f"{prefix}{amount_cents / 100:.2f}"
