"""Player-facing message texts (Telegram HTML)."""

from __future__ import annotations

import asyncio
from html import escape

import structlog

from dejackpot.clients.price import PriceFeed
from dejackpot.errors import PriceUnavailableError
from dejackpot.models.session import SessionStatus
from dejackpot.utils.units import format_sol, format_usd

logger = structlog.get_logger()


def format_rolls(rolls: list[int] | tuple[int, ...]) -> str:
    if not rolls:
        return "<i>None yet</i>"
    return " ".join(f"🎲<b>{roll}</b>" for roll in rolls)


async def pool_display(
    pool_value: int,
    price_feed: PriceFeed | None,
    *,
    timeout: float = 5.0,
) -> str:
    """Pool value in USD, falling back to SOL when no price is available."""
    if price_feed is not None:
        try:
            async with asyncio.timeout(timeout):
                price = await price_feed.get_sol_usd_price()
            return escape(format_usd(pool_value, price))
        except (PriceUnavailableError, TimeoutError) as exc:
            logger.warning("presentation.price_unavailable", error=str(exc) or "timeout")
    return f"{escape(format_sol(pool_value))} (USD price unavailable)"


def render_prompt(
    *,
    helper_username: str,
    initial_score: int,
    run_rolls: list[int],
    total_score: int,
    target_score: int,
    bust_value: int,
    pool_text: str,
    turn_timeout_seconds: float,
    last_roll: int | None = None,
) -> str:
    lines = [
        f"🏆 <b>Jackpot Run!</b> (Dice by @{escape(helper_username)})",
        "",
        f"Your score entering this run: <b>{initial_score}</b>",
        f"Rolls during this Jackpot Run: {format_rolls(run_rolls)}",
        f"🔥 Combined Total Score: <b>{total_score}</b>",
        f"🎯 Target for Jackpot: <b>{target_score}+</b> (Bust on {bust_value})",
        f"💰 Jackpot Pool: <b>{pool_text}</b>",
        "",
    ]
    if last_roll is not None:
        lines += [f"You just rolled: 🎲<b>{last_roll}</b>!", ""]
    lines.append(f"Send 🎲 to roll again! (Timeout: {turn_timeout_seconds:g}s)")
    return "\n".join(lines)


_OUTCOME_COPY = {
    SessionStatus.COMPLETED_BUST: (
        "💥 Oops! Jackpot Run Halted (Session {sid}) 💥",
        "Tough break! Maybe next time the dice will be kinder.",
    ),
    SessionStatus.COMPLETED_TARGET_REACHED: (
        "🎉🎯 Jackpot Target Smashed! (Session {sid}) 🎯🎉",
        "Absolutely legendary rolling! You've done it!",
    ),
    SessionStatus.COMPLETED_TIMEOUT_FORFEIT: (
        "⏳ Time's Up! (Session {sid}) ⏳",
        "The clock ran out on this jackpot attempt.",
    ),
}


def render_outcome(
    *,
    session_id: str,
    status: SessionStatus,
    final_score: int,
    notes: str,
    main_bot_username: str,
) -> str:
    sid = escape(session_id)
    copy = _OUTCOME_COPY.get(status)
    if copy is None:
        title = f"⚠️ Jackpot Run Update (Session {sid}) ⚠️"
        body = f"There was an issue with your jackpot run.\nDetails: {escape(notes)}"
    else:
        title = copy[0].format(sid=sid)
        body = (
            f"Your final score for this jackpot attempt: <b>{final_score}</b>.\n"
            f"{escape(notes)} {copy[1]}"
        )
    return (
        f"{title}\n\n{body}\n\n"
        f"The Main Casino Bot (@{escape(main_bot_username)}) will now process "
        "the final game result. Stand by!"
    )


def render_help(*, helper_username: str, main_bot_username: str) -> str:
    return (
        f"I am @{escape(helper_username)}, a dedicated helper bot for Dice Escalator "
        f"Jackpot Runs for the main casino bot (@{escape(main_bot_username)}).\n"
        "I take over once you enter jackpot mode and manage your rolls for the big prize!\n"
        "You typically don't need to interact with me directly via commands."
    )
