"""Dice Escalator jackpot helper worker.

One of many identical workers that claim pending jackpot runs from a shared
store, play them out with the player over Telegram, and write the outcome
back for the main bot.
"""

__version__ = "0.1.0"
