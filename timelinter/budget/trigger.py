from datetime import timedelta


def should_trigger(is_wasteful: bool, is_allowed: bool, remaining: timedelta) -> bool:
    """Start (or keep) an intervention only when the bucket is empty on an un-allowed wasteful app."""
    return is_wasteful and not is_allowed and remaining <= timedelta(0)
