"""Pure lamport / SOL / USD conversions for display.

Nothing here touches the turn state machine; the pool value is opaque to it.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

LAMPORTS_PER_SOL = 1_000_000_000


def lamports_to_sol(lamports: int | str) -> Decimal:
    """Convert an integer lamport amount to SOL.

    Raises:
        ValueError: If ``lamports`` is not an integer value
    """
    try:
        amount = Decimal(int(lamports))
    except (TypeError, ValueError, InvalidOperation) as exc:
        raise ValueError(f"Invalid lamport amount: {lamports!r}") from exc
    return amount / LAMPORTS_PER_SOL


def format_usd(lamports: int | str, sol_usd_price: float | None, decimals: int = 2) -> str:
    """Render a lamport amount as a USD string, e.g. ``$1,234.50``."""
    if not isinstance(sol_usd_price, (int, float)) or sol_usd_price <= 0:
        return "Price N/A"
    try:
        sol = lamports_to_sol(lamports)
    except ValueError:
        return "Amount Error"
    usd = (sol * Decimal(str(sol_usd_price))).quantize(
        Decimal(1).scaleb(-decimals), rounding=ROUND_HALF_UP
    )
    return f"${usd:,.{decimals}f}"


def format_sol(lamports: int | str, decimals: int = 2) -> str:
    """Render a lamport amount as ``~1.50 SOL``."""
    try:
        sol = lamports_to_sol(lamports)
    except ValueError:
        return "Amount Error"
    sol = sol.quantize(Decimal(1).scaleb(-decimals), rounding=ROUND_HALF_UP)
    return f"~{sol:.{decimals}f} SOL"
