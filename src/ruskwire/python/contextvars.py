# SPDX-FileCopyrightText: 2020-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later

from collections.abc import Callable, Mapping
from contextvars import Context, ContextVar, copy_context
from functools import wraps
from typing import Any

__all__ = 'ContextSpec', 'run_in_context'


class ContextSpec:
    """The values that a set of context variables take while some code runs"""

    context_vars: Mapping[ContextVar[Any], Any]

    def __init__(self, context_vars: Mapping[ContextVar[Any], Any]) -> None:
        self.context_vars = dict(context_vars)

    def __repr__(self) -> str:
        return f'{self.__class__.__qualname__}: {', '.join(f'{var.name}={value!r}' for var, value in self.context_vars.items())}'

    def apply(self, context: Context) -> None:
        for var, value in self.context_vars.items():
            context.run(var.set, value)

    def run[T, **P](self, func: Callable[P, T], /, *args: P.args, **kw: P.kwargs) -> T:
        """Run func in a copy of the current context, which has the context variables set to their values"""
        context = copy_context()
        self.apply(context)
        return context.run(func, *args, **kw)


def run_in_context[T, **P](*, sentinel: ContextVar[bool]) -> Callable[[Callable[P, T]], Callable[P, T]]:
    """
    Run the decorated function in a contextvars context.

    The context is created on entry and is active until the function returns.
    All functions called from the decorated function will run in the context.
    If the decorated function is recursive or calls to other functions decorated
    with the same decorator and using the same sentinel they'll find the context
    active and will directly execute their code without re-creating the context.
    """

    def decorate_function(func: Callable[P, T]) -> Callable[P, T]:
        @wraps(func)
        def wrapper(*args: P.args, **kw: P.kwargs) -> T:
            if sentinel.get(False):
                return func(*args, **kw)
            context = copy_context()
            context.run(sentinel.set, True)  # noqa: FBT003
            return context.run(func, *args, **kw)

        return wrapper

    return decorate_function
