"""Static and runtime conformance checks between tokens and implementations."""

from __future__ import annotations

import inspect
import typing
from typing import Any, get_type_hints


if hasattr(typing, "is_protocol"):
    # https://docs.python.org/3/library/typing.html#typing.is_protocol
    def is_protocol(tp: object) -> bool:
        return inspect.isclass(tp) and typing.is_protocol(tp)

else:

    def is_protocol(tp: object) -> bool:
        """Detect whether 'tp' is a typing.Protocol class (not a nominal subclass of one)."""
        return inspect.isclass(tp) and bool(getattr(tp, "_is_protocol", False)) and tp is not typing.Protocol


def is_runtime_checkable(tp: type) -> bool:
    if not is_protocol(tp):
        return False

    try:
        isinstance(None, tp)
    except TypeError:
        return False
    else:
        return True


def validate_impl(token: type, impl: type) -> None:
    """Validate that 'impl' can stand in for the class token 'token'.

    - For normal classes/ABCs: require issubclass(impl, token).
    - For Protocols: nominal conformance via MRO, otherwise structural conformance.
    """
    if not inspect.isclass(token):
        msg = "Non-type tokens (like strings) cannot be validated statically"
        raise ValueError(msg)

    if not is_protocol(token):
        if not issubclass(impl, token):
            msg = f"Implementation {impl.__name__} must be a subclass of {token.__name__}"
            raise TypeError(msg)
        return

    validate_protocol_impl(token, impl)


def validate_protocol_impl(proto_cls: type, impl: type) -> None:
    if proto_cls in getattr(impl, "__mro__", ()):
        return

    problems = _structural_problems(proto_cls, impl)
    if problems:
        msg = (
            f"Implementation {impl.__name__} does not structurally conform to protocol "
            f"{proto_cls.__name__}: {'; '.join(problems)}"
        )
        raise TypeError(msg)


def check_instance(token: type, instance: object, *, from_factory: bool) -> None:
    """Check a freshly built instance against its class token.

    Impl registrations were validated at register time and auto-wired classes
    construct the token itself, so only factory output needs `isinstance`.
    """
    if is_protocol(token):
        try:
            validate_protocol_impl(token, type(instance))
        except TypeError as e:
            msg = f"Resolved instance {type(instance).__name__} does not conform to protocol {token.__name__}"
            raise TypeError(msg) from e

        if is_runtime_checkable(token) and not isinstance(instance, token):
            msg = f"Resolved instance {type(instance).__name__} does not implement runtime protocol {token.__name__}"
            raise TypeError(msg)

    elif from_factory and not isinstance(instance, token):
        msg = f"Resolved instance {type(instance).__name__} is not an instance of {token.__name__}"
        raise TypeError(msg)


def _structural_problems(proto_cls: type, impl: type) -> list[str]:
    """Best-effort structural conformance: presence, required arity and return types."""
    missing: list[str] = []
    mismatches: list[str] = []

    try:
        proto_hints = get_type_hints(proto_cls, include_extras=True)
    except (TypeError, NameError):
        proto_hints = {}

    for name in proto_hints:
        if not name.startswith("_") and not hasattr(impl, name):
            missing.append(name)

    for name, proto_attr in proto_cls.__dict__.items():
        if name.startswith("_") or not inspect.isfunction(proto_attr):
            continue

        if not hasattr(impl, name):
            missing.append(name)
            continue

        impl_attr = getattr(impl, name)
        if not callable(impl_attr):
            mismatches.append(f"{name}: not callable on {impl.__name__}")
            continue

        try:
            mismatch = _compare_signatures(name, proto_attr, impl_attr)
        except (TypeError, ValueError) as e:
            mismatch = f"{name}: unable to compare signatures ({e})"
        if mismatch:
            mismatches.append(mismatch)

    problems = []
    if missing:
        problems.append(f"missing members: {', '.join(missing)}")
    if mismatches:
        problems.append(f"signature mismatches: {', '.join(mismatches)}")
    return problems


def _compare_signatures(name: str, proto_attr: Any, impl_attr: Any) -> str | None:
    proto_sig = inspect.signature(proto_attr)
    impl_sig = inspect.signature(impl_attr)

    proto_arity = _required_positional(proto_sig)
    impl_arity = _required_positional(impl_sig)
    if impl_arity < proto_arity:
        return (
            f"{name}: impl has fewer required positional params "
            f"({impl_arity}) than protocol ({proto_arity})"
        )

    proto_ret = proto_sig.return_annotation
    impl_ret = impl_sig.return_annotation
    if (
        proto_ret is not inspect.Signature.empty
        and impl_ret is not inspect.Signature.empty
        and proto_ret is not Any
        and impl_ret is not Any
        and not _is_return_type_compatible(impl_ret, proto_ret)
    ):
        return f"{name}: return type {impl_ret!r} is not compatible with protocol return type {proto_ret!r}"

    return None


def _required_positional(sig: inspect.Signature) -> int:
    return sum(
        1
        for p in sig.parameters.values()
        if p.name != "self"
        and p.kind in (inspect.Parameter.POSITIONAL_ONLY, inspect.Parameter.POSITIONAL_OR_KEYWORD)
        and p.default is inspect.Parameter.empty
    )


def _is_return_type_compatible(impl_ret: object, proto_ret: object) -> bool:
    if impl_ret == proto_ret:
        return True

    # class-based covariance
    if isinstance(impl_ret, type) and isinstance(proto_ret, type):
        return issubclass(impl_ret, proto_ret)

    # Union, Protocol, TypeVar, string annotations: conservative failure
    return False
