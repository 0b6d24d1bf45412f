from __future__ import annotations

from typing import Any


class ResolutionError(RuntimeError):
    pass


class UnregisteredCapabilityError(ResolutionError, LookupError):
    def __init__(self, token: Any) -> None:
        super().__init__(f"No registration found for token: {token!r}")
        self.token = token


class MissingScopeError(ResolutionError):
    pass


class CyclicDependencyError(ResolutionError):
    def __init__(self, chain: list[Any]) -> None:
        path = " -> ".join(_token_name(t) for t in chain)
        super().__init__(f"Cyclic dependency detected: {path}")
        self.chain = chain


class DuplicateRegistrationError(KeyError):
    def __str__(self) -> str:
        # KeyError would repr() the message
        return str(self.args[0]) if self.args else ""


class RegistrationClosedError(RuntimeError):
    pass


def _token_name(token: Any) -> str:
    if isinstance(token, str):
        return token
    return getattr(token, "__qualname__", None) or repr(token)
