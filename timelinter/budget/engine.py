"""Token-bucket accounting of the user's remaining grace time.

Wasteful time drains the bucket. Any other time refills it slowly up to
``max_threshold``. Time in a good app is the only way to go above the
threshold (overfill), and that overfill bleeds away again while the user
is doing something neutral.
"""

from datetime import datetime, timedelta

from timelinter.budget.models import ZERO, BudgetConfig, BudgetState

ONE_HOUR = timedelta(hours=1)


class BudgetInvariantError(RuntimeError):
    """A budget state outside its clamp range was about to be stored."""


def clamp(remaining: timedelta, config: BudgetConfig) -> timedelta:
    return max(ZERO, min(remaining, config.capacity))


def update(
    state: BudgetState,
    is_wasteful: bool,
    is_good_app: bool,
    now: datetime,
    config: BudgetConfig,
) -> BudgetState:
    delta = now - state.last_update
    if delta <= ZERO:
        # Clock went backwards or a duplicate tick
        return state.model_copy(update={"remaining": clamp(state.remaining, config)})

    remaining = state.remaining
    accumulated_idle = state.accumulated_idle
    accumulated_good_app = state.accumulated_good_app

    if is_wasteful:
        remaining -= delta
    else:
        if config.replenish_enabled:
            accumulated_idle += delta
            cycles = accumulated_idle // config.replenish_interval
            accumulated_idle %= config.replenish_interval
            if cycles > 0 and remaining < config.max_threshold:
                remaining = min(config.max_threshold, remaining + cycles * config.replenish_amount)

        if is_good_app:
            if config.good_app_reward_enabled:
                accumulated_good_app += delta
                rewards = accumulated_good_app // config.good_app_reward_interval
                accumulated_good_app %= config.good_app_reward_interval
                remaining += rewards * config.good_app_reward_amount
        else:
            overfill = max(ZERO, remaining - config.max_threshold)
            if overfill > ZERO and config.overfill_decay_per_hour > ZERO:
                decay = config.overfill_decay_per_hour * (delta / ONE_HOUR)
                remaining -= min(decay, overfill)

    return BudgetState(
        remaining=clamp(remaining, config),
        accumulated_idle=accumulated_idle,
        accumulated_good_app=accumulated_good_app,
        last_update=now,
    )


def overfill(state: BudgetState, config: BudgetConfig) -> timedelta:
    return max(ZERO, state.remaining - config.max_threshold)


def check_invariants(state: BudgetState, config: BudgetConfig):
    if not ZERO <= state.remaining <= config.capacity:
        raise BudgetInvariantError(
            f"remaining={state.remaining} outside [0, {config.capacity}]"
        )
    if state.accumulated_idle < ZERO or state.accumulated_good_app < ZERO:
        raise BudgetInvariantError("negative carry")
