"""Unit tests for player-facing message rendering."""

from __future__ import annotations

from dejackpot.models import SessionStatus
from dejackpot.presentation import format_rolls, pool_display, render_outcome, render_prompt
from tests.fakes import StaticPriceFeed


def test_format_rolls():
    assert format_rolls([]) == "<i>None yet</i>"
    assert format_rolls([4, 6]) == "🎲<b>4</b> 🎲<b>6</b>"


class TestPoolDisplay:
    async def test_usd_when_price_available(self):
        assert await pool_display(1_500_000_000, StaticPriceFeed(150.0)) == "$225.00"

    async def test_sol_fallback_without_feed(self):
        assert await pool_display(1_500_000_000, None) == "~1.50 SOL (USD price unavailable)"

    async def test_sol_fallback_when_price_unavailable(self):
        text = await pool_display(1_500_000_000, StaticPriceFeed(None))
        assert text == "~1.50 SOL (USD price unavailable)"

    async def test_slow_price_feed_times_out(self):
        feed = StaticPriceFeed(150.0, delay=1.0)
        text = await pool_display(1_500_000_000, feed, timeout=0.01)
        assert text == "~1.50 SOL (USD price unavailable)"


def test_prompt_without_last_roll():
    text = render_prompt(
        helper_username="HelperTestBot",
        initial_score=7,
        run_rolls=[],
        total_score=7,
        target_score=30,
        bust_value=1,
        pool_text="$225.00",
        turn_timeout_seconds=45.0,
    )

    assert "Your score entering this run: <b>7</b>" in text
    assert "Rolls during this Jackpot Run: <i>None yet</i>" in text
    assert "Target for Jackpot: <b>30+</b> (Bust on 1)" in text
    assert "You just rolled" not in text
    assert "(Timeout: 45s)" in text


def test_outcome_escapes_notes():
    text = render_outcome(
        session_id="s1",
        status=SessionStatus.COMPLETED_BUST,
        final_score=13,
        notes="<script>",
        main_bot_username="MainTestBot",
    )

    assert "Oops! Jackpot Run Halted (Session s1)" in text
    assert "&lt;script&gt;" in text
    assert "<script>" not in text
    assert "Your final score for this jackpot attempt: <b>13</b>." in text
