"""Rupiah formatting for notification texts."""


def format_idr(amount: int) -> str:
    """Return «Rp 150.000»; IDR has no minor unit, dots group thousands."""
    return f"Rp {int(amount):,}".replace(",", ".")
