"""Minimal dependency injection library with scoped lifetimes.

This package provides a lightweight service registry for Python, allowing
registration and resolution of types, factories, and pre-built instances with
singleton, transient, or scoped lifetimes.

Exports:
- `Container`: Main DI container supporting type/factory registration and resolution.
- `Lifetime`: Enum for controlling object lifetimes (singleton, transient, scoped).
- `Scope`: Unit-of-work container holding scoped instances. Resolves within itself
  first, then falls back to its parent. Created with `Container.begin_scope()`.
- Errors raised on registration and resolution failures.
"""

from ._container import Container, Lifetime, Registration, Scope
from ._errors import (
    CyclicDependencyError,
    DuplicateRegistrationError,
    MissingScopeError,
    RegistrationClosedError,
    ResolutionError,
    UnregisteredCapabilityError,
)


__all__ = [
    "Container",
    "CyclicDependencyError",
    "DuplicateRegistrationError",
    "Lifetime",
    "MissingScopeError",
    "Registration",
    "RegistrationClosedError",
    "ResolutionError",
    "Scope",
    "UnregisteredCapabilityError",
]
