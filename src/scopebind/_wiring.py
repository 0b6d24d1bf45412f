from __future__ import annotations

import inspect
import logging
from typing import TYPE_CHECKING, Any, TypeVar, get_type_hints


if TYPE_CHECKING:
    from collections.abc import Mapping

    from ._container import Container

    T = TypeVar("T")


logger = logging.getLogger(__name__)


class Constructor:
    """Builds a class by binding overrides and injecting the remaining parameters."""

    def __init__(self, resolver: Container) -> None:
        self._resolver = resolver

    def construct(self, cls: type[T], **overrides: Any) -> T:
        if cls.__init__ is object.__init__:
            return cls()

        overrides.pop("self", None)  # never allow passing 'self'
        try:
            sig = inspect.signature(cls)
        except ValueError:
            # C-level __init__ (Exception, OrderedDict, ...) exposes no signature
            return cls(**overrides)

        kw_overrides, posonly_overrides = self._split_positional_only(overrides, sig.parameters)
        bound = self._bind_explicit(sig, kw_overrides, cls)
        for name, value in posonly_overrides.items():
            bound.arguments[name] = value

        self._fill_missing_arguments(cls, sig, bound)

        args, kwargs = self._materialize_call(sig, bound)
        return cls(*args, **kwargs)

    def _fill_missing_arguments(self, cls: type, sig: inspect.Signature, bound: inspect.BoundArguments) -> None:
        hints = get_init_type_hints(cls)

        for name, p in sig.parameters.items():
            if p.kind in (p.VAR_POSITIONAL, p.VAR_KEYWORD) or name in bound.arguments:
                continue
            bound.arguments[name] = self._resolver.resolve_param(cls, name, p, hints)

    @staticmethod
    def _materialize_call(sig: inspect.Signature, bound: inspect.BoundArguments) -> tuple[list[Any], dict[str, Any]]:
        args: list[Any] = []
        kwargs: dict[str, Any] = {}
        var_args: tuple[Any, ...] = ()
        var_kwargs: dict[str, Any] = {}

        for name, p in sig.parameters.items():
            if p.kind is p.POSITIONAL_ONLY:
                args.append(bound.arguments[name])
            elif p.kind is p.VAR_POSITIONAL:
                var_args = tuple(bound.arguments.get(name, ()))
            elif p.kind in (p.POSITIONAL_OR_KEYWORD, p.KEYWORD_ONLY):
                kwargs[name] = bound.arguments[name]
            elif p.kind is p.VAR_KEYWORD:
                var_kwargs = dict(bound.arguments.get(name, {}))

        args.extend(var_args)
        kwargs.update(var_kwargs)
        return args, kwargs

    @staticmethod
    def _split_positional_only(
        overrides: dict[str, Any],
        params: Mapping[str, inspect.Parameter],
    ) -> tuple[dict[str, Any], dict[str, Any]]:
        pos_only = {name for name, p in params.items() if p.kind is inspect.Parameter.POSITIONAL_ONLY}

        return (
            {k: v for k, v in overrides.items() if k not in pos_only},
            {k: v for k, v in overrides.items() if k in pos_only},
        )

    @staticmethod
    def _bind_explicit(sig: inspect.Signature, kw: dict[str, Any], cls: type) -> inspect.BoundArguments:
        try:
            return sig.bind_partial(**kw)
        except TypeError as e:
            msg = f"Overrides don't match {cls.__name__} signature: {e}"
            raise TypeError(msg) from e


def get_init_type_hints(cls: type) -> dict[str, Any]:
    try:
        init = inspect.getattr_static(cls, "__init__")
        hints = get_type_hints(init)
    except TypeError:
        hints = {}
    except NameError as exc:
        logger.warning("'%s' name error retrieving %s (%s) type hints", exc.name, cls.__name__, cls.__qualname__)
        hints = {}

    return hints
