"""Timeframe string conversions."""

from datetime import timedelta


def timeframe_minutes(tf: str) -> int:
    """Convert a timeframe such as '5m', '1h', '4h', '1d', '1w' to minutes."""
    tf = tf.strip().lower()
    try:
        if tf.endswith("m"):
            return int(tf[:-1])
        if tf.endswith("h"):
            return int(tf[:-1]) * 60
        if tf.endswith("d"):
            return int(tf[:-1]) * 60 * 24
        if tf.endswith("w"):
            return int(tf[:-1]) * 60 * 24 * 7
    except ValueError:
        pass
    raise ValueError(f"Unsupported timeframe: {tf}")


def timeframe_delta(tf: str) -> timedelta:
    return timedelta(minutes=timeframe_minutes(tf))


def bybit_interval(tf: str) -> str:
    """Bybit v5 kline interval: minutes as a number, or D / W."""
    minutes = timeframe_minutes(tf)
    if minutes == 60 * 24:
        return "D"
    if minutes == 60 * 24 * 7:
        return "W"
    if minutes >= 60 * 24:
        raise ValueError(f"Unsupported Bybit timeframe: {tf}")
    return str(minutes)
