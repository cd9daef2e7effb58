from datetime import datetime, timedelta, timezone


def format_duration(elapsed: timedelta | float) -> str:
    """Render an elapsed time as ``1d 2h 3m 4s``.

    Leading zero units are dropped, so 75 seconds is ``1m 15s`` and anything
    under a minute is just seconds. Negative values are treated as their
    absolute value.

    Args:
        elapsed: A timedelta or a number of seconds.

    Returns:
        The compact duration string.
    """
    if isinstance(elapsed, timedelta):
        elapsed = elapsed.total_seconds()
    seconds = int(abs(elapsed))

    minutes, seconds = divmod(seconds, 60)
    hours, minutes = divmod(minutes, 60)
    days, hours = divmod(hours, 24)

    if days > 0:
        return f"{days}d {hours}h {minutes}m {seconds}s"
    if hours > 0:
        return f"{hours}h {minutes}m {seconds}s"
    if minutes > 0:
        return f"{minutes}m {seconds}s"
    return f"{seconds}s"


def discord_timestamp(value: datetime, style: str = "R") -> str:
    """Return Discord's ``<t:unix:style>`` markup for ``value``.

    ``R`` renders as a relative time ("3 years ago"), ``F`` as a full date.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return f"<t:{int(value.timestamp())}:{style}>"
