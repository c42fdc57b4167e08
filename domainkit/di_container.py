"""
Dependency Injection Container

Provides the resolver used to build domain event handlers and their
dependencies, with constructor injection and per-scope lifetimes.
"""

import logging
import inspect
from typing import Any, Dict, Optional, Protocol, Tuple, Type, TypeVar, get_type_hints

logger = logging.getLogger(__name__)

T = TypeVar('T')

LIFETIMES = ('transient', 'singleton', 'scoped')


class Resolver(Protocol):
    """What the handler registry needs from a dependency resolver."""

    def resolve(self, interface: Type[T]) -> T:
        ...

    def try_resolve(self, interface: Type[T]) -> Optional[T]:
        ...

    def create_instance(self, cls: Type[T]) -> T:
        ...


class DIContainer:
    """
    Dependency Injection container.

    Supports:
    - Registration of types and instances
    - Constructor injection from type hints
    - Transient, singleton and scoped lifetimes
    - Child scopes that share the parent's registrations

    Usage:
        container = DIContainer()

        container.register_instance(Mailer, SmtpMailer(...))
        container.register(PayrollService, lifetime='scoped')

        scope = container.create_scope()
        payroll = scope.resolve(PayrollService)
    """

    def __init__(self, parent: Optional["DIContainer"] = None):
        """
        Initialize DI container with empty registrations.

        Args:
            parent: Container this one is a scope of. Registrations are looked
                up here first, then in the parent chain.
        """
        self._parent = parent
        self._registrations: Dict[Type, Dict[str, Any]] = {}
        self._instances: Dict[Type, Any] = {}

    def register(
        self,
        interface: Type[T],
        implementation: Any = None,
        lifetime: str = 'transient'
    ) -> None:
        """
        Register a type with the container.

        Args:
            interface: The interface or base type to register
            implementation: The implementation (class or instance)
            lifetime: 'transient' for a new instance on every resolve,
                'singleton' for one instance per owning container,
                'scoped' for one instance per scope

        Raises:
            ValueError: If lifetime is unknown
        """
        if lifetime not in LIFETIMES:
            raise ValueError(f"Unknown lifetime '{lifetime}', expected one of {LIFETIMES}")

        if implementation is None:
            implementation = interface

        self._registrations[interface] = {
            'implementation': implementation,
            'lifetime': lifetime
        }

        logger.debug(
            f"Registered {interface.__name__} -> "
            f"{implementation.__name__ if isinstance(implementation, type) else implementation.__class__.__name__} "
            f"({lifetime})"
        )

    def register_instance(self, interface: Type[T], instance: T) -> None:
        """
        Register a singleton instance.

        Args:
            interface: The interface type
            instance: The instance to register
        """
        self._registrations[interface] = {
            'implementation': instance,
            'lifetime': 'singleton'
        }
        self._instances[interface] = instance
        logger.debug(f"Registered singleton instance {interface.__name__}")

    def resolve(self, interface: Type[T]) -> T:
        """
        Resolve a type from the container.

        Args:
            interface: The interface type to resolve

        Returns:
            Instance of the requested type

        Raises:
            ValueError: If type is not registered
        """
        owner, registration = self._find_registration(interface)
        if registration is None:
            raise ValueError(f"Type {interface.__name__} is not registered")

        implementation = registration['implementation']
        lifetime = registration['lifetime']

        if lifetime == 'transient':
            if not isinstance(implementation, type):
                return implementation
            return self.create_instance(implementation)

        # Singletons live in the container that registered them, scoped
        # instances in the scope doing the resolving.
        cache = owner._instances if lifetime == 'singleton' else self._instances
        if interface in cache:
            logger.debug(f"Returning cached {lifetime} instance of {interface.__name__}")
            return cache[interface]

        if isinstance(implementation, type):
            instance = self.create_instance(implementation)
        else:
            instance = implementation
        cache[interface] = instance
        return instance

    def try_resolve(self, interface: Type[T]) -> Optional[T]:
        """Resolve a type, or return None when it is not registered."""
        if not self.is_registered(interface):
            return None
        return self.resolve(interface)

    def create_instance(self, cls: Type[T]) -> T:
        """
        Create an instance with constructor injection.

        Parameters annotated with a registered type are resolved from the
        container; other parameters fall back to their defaults.

        Args:
            cls: Class to instantiate

        Returns:
            Instance with dependencies injected

        Raises:
            ValueError: If a required parameter cannot be resolved
        """
        sig = inspect.signature(cls.__init__)
        params = [
            p for name, p in sig.parameters.items()
            if name != 'self' and p.kind not in (p.VAR_POSITIONAL, p.VAR_KEYWORD)
        ]

        if not params:
            logger.debug(f"Created instance of {cls.__name__}")
            return cls()

        try:
            type_hints = get_type_hints(cls.__init__)
        except (NameError, TypeError) as e:
            logger.warning(f"Could not read constructor type hints of {cls.__name__}: {e}")
            type_hints = {}

        kwargs = {}
        for param in params:
            param_type = type_hints.get(param.name)
            if param_type is not None and self.is_registered(param_type):
                kwargs[param.name] = self.resolve(param_type)
            elif param.default is not inspect.Parameter.empty:
                kwargs[param.name] = param.default
            else:
                raise ValueError(
                    f"Cannot resolve parameter '{param.name}' of {cls.__name__}: "
                    f"{getattr(param_type, '__name__', param_type)} is not registered"
                )

        logger.debug(f"Created instance of {cls.__name__} with {sorted(kwargs)}")
        return cls(**kwargs)

    def create_scope(self) -> "DIContainer":
        """
        Create a child scope.

        The scope sees every registration of this container and caches its
        own 'scoped' instances.
        """
        return DIContainer(parent=self)

    def is_registered(self, interface: Type) -> bool:
        """
        Check if a type is registered here or in a parent container.

        Args:
            interface: Type to check

        Returns:
            True if registered, False otherwise
        """
        return self._find_registration(interface)[1] is not None

    def clear(self) -> None:
        """Clear all registrations and instances of this container."""
        self._registrations.clear()
        self._instances.clear()
        logger.debug("Cleared all registrations from DI container")

    def _find_registration(
        self, interface: Type
    ) -> Tuple[Optional["DIContainer"], Optional[Dict[str, Any]]]:
        container = self
        while container is not None:
            registration = container._registrations.get(interface)
            if registration is not None:
                return container, registration
            container = container._parent
        return None, None
