from __future__ import annotations

import inspect
import logging
import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import (
    TYPE_CHECKING,
    Any,
    ParamSpec,
    TypeVar,
    overload,
)

from ._errors import (
    CyclicDependencyError,
    DuplicateRegistrationError,
    MissingScopeError,
    RegistrationClosedError,
    ResolutionError,
    UnregisteredCapabilityError,
)
from ._protocols import check_instance, is_protocol, validate_impl
from ._wiring import Constructor


logger = logging.getLogger(__name__)

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator
    from types import TracebackType

    T = TypeVar("T")
    # Parameter spec for factories
    P = ParamSpec("P")

    Token = type[T] | str

_MISSING = object()


class Lifetime(Enum):
    SINGLETON = "singleton"
    TRANSIENT = "transient"
    SCOPED = "scoped"


@dataclass(frozen=True)
class Registration:
    factory: Callable[..., object] | None
    impl: type | None
    lifetime: Lifetime
    external: bool = False  # pre-built instance, never released by the container


class Container:
    """Minimal DI container.

    - register types, factories or pre-built instances
    - resolve with constructor injection
    - lifetimes: singleton / transient / scoped
    - scopes with per-scope instances and release on scope end.
    """

    def __init__(self, *, autowire: bool = False) -> None:
        self._registrations: dict[Any, Registration] = {}
        self._instances: dict[Any, object] = {}
        self._owned: list[tuple[Any, object]] = []
        self._scopes: dict[str, Scope] = {}
        self._lock = threading.RLock()
        self._resolving = threading.local()
        self._autowire = autowire
        self._frozen = False
        self._closed = False

    # -- registration ------------------------------------------------------

    @overload
    def register(
        self,
        token: type[T],
        impl: type[T],
        *,
        factory: None = ...,
        lifetime: Lifetime = Lifetime.SINGLETON,
        replace: bool = False,
    ) -> None: ...

    @overload
    def register(
        self,
        token: type[T],
        impl: None = ...,
        *,
        factory: Callable[P, T],
        lifetime: Lifetime = Lifetime.SINGLETON,
        replace: bool = False,
    ) -> None: ...

    @overload
    def register(
        self,
        token: str,
        impl: type | None = ...,
        *,
        factory: Callable[..., Any] | None = ...,
        lifetime: Lifetime = Lifetime.SINGLETON,
        replace: bool = False,
    ) -> None: ...

    def register(
        self,
        token: Token[T],
        impl: type | None = None,
        *,
        factory: Callable[..., Any] | None = None,
        lifetime: Lifetime = Lifetime.SINGLETON,
        replace: bool = False,
    ) -> None:
        """Register a concrete type or a factory for a token.

        Factories are called as ``factory(resolver, **overrides)`` at resolution
        time, where ``resolver`` is the container or scope doing the resolving.

        Example:
          container.register(IFoo, FooImpl)
          container.register("db", factory=create_db, lifetime=Lifetime.SCOPED)

        """
        if impl is not None and factory is not None:
            msg = "Provide either `impl` or `factory`, not both."
            raise ValueError(msg)

        if impl is None and factory is None:
            msg = "Either `impl` or `factory` must be provided."
            raise ValueError(msg)

        # String tokens cannot be validated statically.
        if impl is not None and inspect.isclass(token):
            validate_impl(token, impl)

        self._add(token, Registration(factory=factory, impl=impl, lifetime=lifetime), replace=replace)

    def register_singleton(self, token: Token[T], impl: type | None = None, **kwargs: Any) -> None:
        self.register(token, impl, lifetime=Lifetime.SINGLETON, **kwargs)

    def register_transient(self, token: Token[T], impl: type | None = None, **kwargs: Any) -> None:
        self.register(token, impl, lifetime=Lifetime.TRANSIENT, **kwargs)

    def register_scoped(self, token: Token[T], impl: type | None = None, **kwargs: Any) -> None:
        self.register(token, impl, lifetime=Lifetime.SCOPED, **kwargs)

    def register_instance(
        self,
        token: Token[T],
        instance: object,
        *,
        replace: bool = False,
    ) -> None:
        """Register a pre-built instance (always singleton, never released)."""
        if inspect.isclass(token):
            validate_impl(token, type(instance))

        registration = Registration(factory=None, impl=None, lifetime=Lifetime.SINGLETON, external=True)
        self._add(token, registration, replace=replace, instance=instance)

    def _add(self, token: Any, registration: Registration, *, replace: bool, instance: object = _MISSING) -> None:
        with self._lock:
            if self._frozen:
                msg = f"Cannot register {token!r}: registrations are frozen."
                raise RegistrationClosedError(msg)
            if not replace and token in self._registrations:
                msg = f"Token {token!r} is already registered. Pass replace=True to overwrite."
                raise DuplicateRegistrationError(msg)

            self._registrations[token] = registration
            self._instances.pop(token, None)
            if instance is not _MISSING:
                self._instances[token] = instance

        logger.debug("Registered %r as %s", token, registration.lifetime.value)

    def freeze(self) -> None:
        """Seal the registrations. Resolution and scopes keep working."""
        with self._lock:
            self._frozen = True
        logger.debug("Registrations frozen (%d tokens)", len(self._registrations))

    @property
    def frozen(self) -> bool:
        return self._frozen

    # -- lookup ------------------------------------------------------------

    def _lookup(self, token: Any) -> tuple[Container, Registration] | None:
        reg = self._registrations.get(token)
        if reg is None:
            return None
        return self, reg

    def is_registered(self, token: Any) -> bool:
        return self._lookup(token) is not None

    def __contains__(self, token: object) -> bool:
        return self.is_registered(token)

    # -- resolution --------------------------------------------------------

    @overload
    def resolve(self, token: type[T], **overrides: Any) -> T: ...

    @overload
    def resolve(self, token: str, **overrides: Any) -> object: ...

    def resolve(self, token: Token[T], **overrides: Any) -> object:
        """Resolve the token to an instance.

        - Singleton: built once by the container holding the registration.
        - Scoped: built once per scope; fails on the root container.
        - Transient: built on every call.
        - Unregistered concrete classes are auto-wired as transients when the
          container was created with ``autowire=True``.
        `overrides` lets you explicitly supply constructor/factory args.
        """
        self._ensure_open()

        found = self._lookup(token)
        if found is None:
            if self._autowire and _is_autowirable(token):
                return self._create(token, None, overrides)
            raise UnregisteredCapabilityError(token)

        owner, reg = found
        if reg.lifetime is Lifetime.SINGLETON:
            return owner._get_or_create(token, reg, overrides)

        if reg.lifetime is Lifetime.SCOPED:
            return self._scope_for(token)._get_or_create(token, reg, overrides)

        return self._create(token, reg, overrides)

    def _scope_for(self, token: Any) -> Container:
        msg = f"Token {token!r} is scoped and cannot be resolved outside a scope."
        raise MissingScopeError(msg)

    def try_resolve(self, token: Any, default: Any = None) -> Any:
        """Resolve `token`, or return `default` when it has no registration."""
        if not self.is_registered(token):
            return default
        return self.resolve(token)

    def _get_or_create(self, token: Any, reg: Registration, overrides: dict[str, Any]) -> object:
        instance = self._instances.get(token, _MISSING)
        if instance is not _MISSING:
            return instance

        with self._lock:
            # an end/close may have run between resolve's check and the lock
            self._ensure_open()
            instance = self._instances.get(token, _MISSING)
            if instance is _MISSING:
                instance = self._create(token, reg, overrides)
                self._instances[token] = instance
                self._owned.append((token, instance))
        return instance

    def _create(self, token: Any, reg: Registration | None, overrides: dict[str, Any]) -> object:
        with self._guard(token):
            if reg is not None and reg.factory is not None:
                instance = reg.factory(self, **overrides)
            else:
                cls = reg.impl if reg is not None and reg.impl is not None else token
                instance = Constructor(self).construct(cls, **overrides)

        if inspect.isclass(token):
            check_instance(token, instance, from_factory=reg is not None and reg.factory is not None)

        logger.debug("Built %s for %r", type(instance).__name__, token)
        return instance

    @contextmanager
    def _guard(self, token: Any) -> Iterator[None]:
        chain: list[Any] = self._chain()
        if token in chain:
            raise CyclicDependencyError([*chain[chain.index(token) :], token])

        chain.append(token)
        try:
            yield
        finally:
            chain.pop()

    def _chain(self) -> list[Any]:
        chain = getattr(self._resolving, "chain", None)
        if chain is None:
            chain = self._resolving.chain = []
        return chain

    def resolve_param(
        self,
        cls: type,
        name: str,
        p: inspect.Parameter,
        hints: dict[str, Any],
    ) -> Any:
        """Resolving a constructor parameter.

        Resolution precedence:
        1. explicit override (already bound by the caller)
        2. type-based registration (or auto-wiring)
        3. name-based registration
        4. default
        5. error.
        """
        ann = hints.get(name, inspect.Signature.empty)
        if ann is not inspect.Signature.empty:
            if self.is_registered(ann) or (self._autowire and _is_autowirable(ann)):
                return self.resolve(ann)

        if self.is_registered(name):
            return self.resolve(name)

        if p.default is not inspect.Parameter.empty:
            return p.default

        ann_repr = getattr(ann, "__name__", repr(ann)) if ann is not inspect.Signature.empty else "no-annotation"
        msg = (
            f"Cannot satisfy constructor parameter '{name}' for {cls.__name__}. "
            f"No override/registration/default found (annotation: {ann_repr})."
        )
        raise ResolutionError(msg)

    # -- scopes ------------------------------------------------------------

    def begin_scope(self) -> Scope:
        """Open a scope for one unit of work (e.g. one request)."""
        self._ensure_open()
        scope = Scope(self, uuid.uuid4().hex, _from_parent=True)
        with self._lock:
            self._scopes[scope.id] = scope
        logger.debug("Scope %s started", scope.id)
        return scope

    def get_scope(self, scope_id: str) -> Scope:
        scope = self._scopes.get(scope_id)
        if scope is None:
            msg = f"Unknown or ended scope: {scope_id!r}"
            raise MissingScopeError(msg)
        return scope

    def end_scope(self, scope_id: str) -> None:
        """End a scope, releasing the instances it built."""
        with self._lock:
            scope = self._scopes.pop(scope_id, None)
        if scope is None:
            msg = f"Unknown or ended scope: {scope_id!r}"
            raise MissingScopeError(msg)

        errors = scope._release()
        logger.debug("Scope %s ended", scope_id)
        if errors:
            raise errors[0]

    # -- teardown ----------------------------------------------------------

    def close(self) -> None:
        """End every open scope, then release the singletons this container built."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            scopes = list(self._scopes.values())
            self._scopes.clear()

        errors: list[Exception] = []
        for scope in scopes:
            errors.extend(scope._release())
        errors.extend(self._release())
        if errors:
            raise errors[0]

    def _release(self) -> list[Exception]:
        with self._lock:
            owned = self._owned[::-1]
            self._owned.clear()
            for token, instance in owned:
                if self._instances.get(token, _MISSING) is instance:
                    del self._instances[token]

        errors: list[Exception] = []
        for token, instance in owned:
            close = getattr(instance, "close", None)
            if not callable(close):
                continue
            try:
                close()
            except Exception as e:  # noqa: BLE001
                logger.exception("Failed to release %s built for %r", type(instance).__name__, token)
                errors.append(e)
            else:
                logger.debug("Released %s built for %r", type(instance).__name__, token)
        return errors

    def _ensure_open(self) -> None:
        if self._closed:
            msg = "Container has been closed."
            raise ResolutionError(msg)

    def __enter__(self) -> Container:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()


class Scope(Container):
    """A scoped container that looks up in itself first, then falls back to its parent.

    Holds the instances of scoped registrations for one unit of work and
    releases them when ended. Scope-local registrations override the parent's
    for this scope only.
    """

    def __init__(self, parent: Container, scope_id: str, *, _from_parent: bool = False) -> None:
        if not _from_parent:
            msg = "Scope instances must be created via Container.begin_scope()"
            raise RuntimeError(msg)
        super().__init__(autowire=parent._autowire)
        self._parent = parent
        self._resolving = parent._resolving
        self.id = scope_id

    def _lookup(self, token: Any) -> tuple[Container, Registration] | None:
        return super()._lookup(token) or self._parent._lookup(token)

    def _scope_for(self, token: Any) -> Container:
        return self

    def begin_scope(self) -> Scope:
        return self._parent.begin_scope()

    def get_scope(self, scope_id: str) -> Scope:
        return self._parent.get_scope(scope_id)

    def end_scope(self, scope_id: str) -> None:
        self._parent.end_scope(scope_id)

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
        self._parent.end_scope(self.id)

    def _release(self) -> list[Exception]:
        with self._lock:
            self._closed = True
        return super()._release()

    def _ensure_open(self) -> None:
        if self._closed:
            msg = f"Scope {self.id} has ended."
            raise MissingScopeError(msg)

    def __enter__(self) -> Scope:
        return self

    def __repr__(self) -> str:
        return f"Scope(id={self.id!r})"


def _is_autowirable(token: object) -> bool:
    return (
        inspect.isclass(token)
        and getattr(token, "__module__", "") != "builtins"
        and not is_protocol(token)
        and not inspect.isabstract(token)
    )
