"""
Middleware pipeline composition.

Factories are applied innermost-first (reverse registration order) so that
the first registered middleware ends up as the outermost wrapper:

    use(A); use(B)  ->  A(B(terminal))
    trace: A-enter, B-enter, handler, B-exit, A-exit
"""

from __future__ import annotations

from typing import Sequence

from messagebus.errors import PipelineBuildError
from messagebus.types import MiddlewareFactory, Stage


def build_pipeline(factories: Sequence[MiddlewareFactory], terminal: Stage) -> Stage:
    """Compose `factories` around `terminal`. Pure: builds closures, runs nothing."""
    if not callable(terminal):
        raise PipelineBuildError("Terminal stage must be callable")

    stage = terminal
    for position in range(len(factories) - 1, -1, -1):
        stage = factories[position](stage)
        if not callable(stage):
            raise PipelineBuildError(
                f"Middleware factory at position {position} returned {type(stage).__name__}, "
                "expected a callable stage",
                position=position,
            )
    return stage
