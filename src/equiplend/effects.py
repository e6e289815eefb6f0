"""Best-effort side effects.

A state transition commits first; notifications and activity logging run
afterwards and can fail without undoing it.
"""

from typing import Callable, Iterable

import structlog

logger = structlog.get_logger("equiplend")

Effect = tuple[str, Callable[[], object]]


def run_effects(effects: Iterable[Effect]) -> list[str]:
    """Run each effect in order, logging failures.

    Args:
        effects: ``(name, callable)`` pairs

    Returns:
        Names of the effects that raised
    """
    failed = []
    for name, effect in effects:
        try:
            effect()
        except Exception as e:
            logger.warning("effect_failed", effect=name, error=str(e))
            failed.append(name)
    return failed


def fan_out(
    prefix: str,
    recipients: Callable[[], Iterable[str]],
    send: Callable[[str], object],
) -> list[Effect]:
    """One effect per recipient, named ``prefix:<id>``.

    If looking up the recipients fails, the result is a single ``<prefix>s``
    effect that re-raises that error, so it is reported like any other
    failed delivery.
    """
    try:
        ids = list(recipients())
    except Exception as e:
        error = e

        def fail() -> None:
            raise error

        return [(f"{prefix}s", fail)]
    return [(f"{prefix}:{rid}", lambda rid=rid: send(rid)) for rid in ids]
