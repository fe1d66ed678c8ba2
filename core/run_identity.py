"""Stable identifiers for practice runs.

Runs recorded by older clients carry no id. Each device derives the same id
for the same logical run from its immutable fields, so a run that reaches
the remote store from two devices is never counted twice.
"""

import logging
import math
from decimal import Decimal

from core.hash_manager import fnv1a
from core.models import Run

log = logging.getLogger("alphatyper.run_identity")

RUN_ID_PREFIX = "r_"


def _format_number(value: int | float) -> str:
    """Render a number the way JavaScript's ``String(number)`` does.

    Shortest round-trip digits, no trailing ``.0``, plain notation for
    decimal exponents from -7 to 20 and ``1.5e-7`` / ``1e+21`` outside it.
    """
    if isinstance(value, int) and abs(value) < 10**21:
        return str(value)
    value = float(value)
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "Infinity" if value > 0 else "-Infinity"
    if value == 0:
        return "0"

    sign = "-" if value < 0 else ""
    _, digit_tuple, exponent = Decimal(repr(abs(value))).as_tuple()
    digits = "".join(str(d) for d in digit_tuple).rstrip("0")
    exponent += len(digit_tuple) - len(digits)
    # value == 0.<digits> * 10**point
    k = len(digits)
    point = exponent + k

    if k <= point <= 21:
        text = digits + "0" * (point - k)
    elif 0 < point <= 21:
        text = f"{digits[:point]}.{digits[point:]}"
    elif -6 < point <= 0:
        text = f"0.{'0' * -point}{digits}"
    else:
        e = point - 1
        mantissa = digits if k == 1 else f"{digits[0]}.{digits[1:]}"
        text = f"{mantissa}e{'+' if e >= 0 else '-'}{abs(e)}"
    return sign + text


def stable_run_id(run: Run) -> str:
    """Derive a run id from its discriminating fields.

    Optional detail (mistake log, specialized settings, device metadata) is
    left out so that replicas holding more or less detail for the same run
    agree on its id. Only the length of the timing log takes part.
    """
    base = "|".join(
        [
            _format_number(run.timestamp),
            run.device,
            run.profile,
            run.mode,
            _format_number(run.time),
            _format_number(run.mistakes),
            "1" if run.blind else "0",
            run.note or "",
            str(len(run.log or [])),
        ]
    )
    return f"{RUN_ID_PREFIX}{fnv1a(base)}"


def ensure_run_ids(history: list[Run]) -> list[Run]:
    """Give every run an id.

    Runs that already have an id are passed through as the same objects.
    When no run needed one, the input list itself is returned so callers
    can detect the no-op with ``is``.

    Args:
        history: Runs, possibly without ids

    Returns:
        List where every run has a non-empty id
    """
    changed = False
    result = []
    for run in history:
        if run.id:
            result.append(run)
            continue
        changed = True
        result.append(run.model_copy(update={"id": stable_run_id(run)}))

    if not changed:
        return history

    log.debug(f"Assigned ids to {sum(1 for r in history if not r.id)} runs")
    return result
