import enum


class ThresholdDecision(str, enum.Enum):
    NO_ACTION = "no_action"
    FIRE_NOTIFICATION = "fire_notification"
    CLEAR_FLAG = "clear_flag"


def evaluate(quantity: float, threshold: float, notified: bool, rearm: bool = False) -> ThresholdDecision:
    """Decide what a quantity change means for the low stock alert.

    Below the threshold an alert fires once, until the flag is cleared. With
    ``rearm`` off the flag is never cleared, so an item alerts at most once in
    its lifetime; with it on, restocking to the threshold or above clears the
    flag and the next dip alerts again.
    """
    if quantity < threshold:
        if notified:
            return ThresholdDecision.NO_ACTION
        return ThresholdDecision.FIRE_NOTIFICATION
    if rearm and notified:
        return ThresholdDecision.CLEAR_FLAG
    return ThresholdDecision.NO_ACTION
