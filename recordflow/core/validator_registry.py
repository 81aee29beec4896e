"""Registry of named Python callables backing CUSTOM validation rules."""

import importlib
import inspect
import threading
from typing import Any, Callable, Dict, Optional

from .exceptions import ValidatorRegistryError
from .logging import get_logger

logger = get_logger(__name__)


class ValidatorRegistry:
    """Registry for custom validators referenced by ``metadata.validator`` on CUSTOM rules.

    A validator is called as ``validator(value, context)``. A truthy non-string
    result passes; ``False``/``None`` fails with the rule's message, and a
    string result fails using that string as the message.
    """

    def __init__(self):
        self._validators: Dict[str, Callable] = {}
        self._descriptions: Dict[str, str] = {}
        self._lock = threading.RLock()

    def register(self, name: str, function: Callable, description: str = "") -> None:
        """Register a Python function as a named validator.

        Args:
            name: Unique identifier for the validator
            function: Callable accepting ``(value, context)``
            description: Optional description of what the validator checks

        Raises:
            ValidatorRegistryError: If the name is taken or the function is invalid
        """
        if not name or not name.strip():
            raise ValidatorRegistryError("Validator name cannot be empty")

        name = name.strip()

        if not callable(function):
            raise ValidatorRegistryError(f"Validator '{name}' must be a callable function", validator_name=name)

        try:
            sig = inspect.signature(function)
            if len(sig.parameters) < 2:
                logger.warning(f"Validator '{name}' accepts fewer than two parameters - it will be called with (value, context)")
        except (ValueError, TypeError) as e:
            raise ValidatorRegistryError(
                f"Cannot inspect function signature for validator '{name}': {e}",
                validator_name=name
            )

        with self._lock:
            if name in self._validators:
                raise ValidatorRegistryError(f"Validator '{name}' is already registered", validator_name=name)
            self._validators[name] = function
            self._descriptions[name] = description.strip() if description else ""

        logger.info(f"Successfully registered validator '{name}' from {function.__module__}.{function.__name__}")

    def get(self, name: str) -> Callable:
        """Retrieve a validator by name.

        Names that are not registered are treated as a dotted ``module.function``
        path and imported; the loaded function is cached under that name.

        Raises:
            ValidatorRegistryError: If the validator cannot be found or loaded
        """
        if not name or not name.strip():
            raise ValidatorRegistryError("Validator name cannot be empty")

        name = name.strip()

        with self._lock:
            if name in self._validators:
                return self._validators[name]

        if "." not in name:
            raise ValidatorRegistryError(f"Validator '{name}' is not registered", validator_name=name)

        module_path, function_name = name.rsplit(".", 1)
        try:
            module = importlib.import_module(module_path)
            function = getattr(module, function_name)
        except ImportError as e:
            raise ValidatorRegistryError(f"Cannot import module for validator '{name}': {e}", validator_name=name)
        except AttributeError as e:
            raise ValidatorRegistryError(f"Function not found in module for validator '{name}': {e}", validator_name=name)

        if not callable(function):
            raise ValidatorRegistryError(f"Validator '{name}' is not callable", validator_name=name)

        with self._lock:
            self._validators[name] = function
            self._descriptions.setdefault(name, "")

        logger.debug(f"Loaded validator '{name}' from {module_path}.{function_name}")
        return function

    def exists(self, name: str) -> bool:
        """Check if a validator is registered (imported paths count once loaded)."""
        if not name or not name.strip():
            return False
        with self._lock:
            return name.strip() in self._validators

    def list_validators(self) -> Dict[str, str]:
        """List registered validators with their descriptions."""
        with self._lock:
            return dict(self._descriptions)

    def unregister(self, name: str) -> bool:
        """Remove a validator.

        Returns:
            True if the validator was removed, False if it was not registered
        """
        if not name or not name.strip():
            raise ValidatorRegistryError("Validator name cannot be empty")

        name = name.strip()
        with self._lock:
            if name not in self._validators:
                return False
            del self._validators[name]
            self._descriptions.pop(name, None)

        logger.info(f"Successfully unregistered validator '{name}'")
        return True

    def call(self, name: str, value: Any, context: Optional[Dict[str, Any]] = None) -> Any:
        """Call a validator with a value and evaluation context.

        Raises:
            ValidatorRegistryError: If the validator is missing or raises
        """
        validator = self.get(name)
        try:
            return validator(value, context or {})
        except Exception as e:
            raise ValidatorRegistryError(f"Failed to execute validator '{name}': {e}", validator_name=name)
