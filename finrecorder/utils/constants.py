"""Shared constants and defaults."""

MARKETS = ["TW", "US"]
SIDES = ["BUY", "SELL"]
CURRENCIES = ["TWD", "USD"]

# Trade currency follows the listing market
MARKET_CURRENCY: dict[str, str] = {
    "TW": "TWD",
    "US": "USD",
}

TRADING_DAYS_PER_YEAR = 252
DAYS_PER_YEAR = 365.25

# Allocation chart palette, assigned by insertion order
CHART_COLORS = [
    "#3b82f6",  # blue
    "#22c55e",  # green
    "#f59e0b",  # amber
    "#ef4444",  # red
    "#8b5cf6",  # violet
    "#06b6d4",  # cyan
    "#ec4899",  # pink
    "#84cc16",  # lime
    "#f97316",  # orange
    "#6366f1",  # indigo
]

# Cron schedules (minute, hour, day_of_week) in settings.timezone
JOB_SCHEDULES: dict[str, list[dict[str, str]]] = {
    "update_tw_prices": [{"minute": "30", "hour": "14", "day_of_week": "mon-fri"}],
    "update_us_prices": [{"minute": "0", "hour": "5", "day_of_week": "tue-sat"}],
    "update_rates": [
        {"minute": "0", "hour": "10", "day_of_week": "*"},
        {"minute": "0", "hour": "16", "day_of_week": "*"},
    ],
    "snapshot_values": [{"minute": "0", "hour": "22", "day_of_week": "*"}],
}
