"""
Attribute storage for remote resources.

Resource classes declare their attributes once, at class level:

    class Thing(Mutable):
        attr_required = ("name",)
        attr_optional = ("description", "created_at")
        attr_mutable = ("description",)

Required attributes must be passed to the constructor, optional attributes
default to UNSET, and only mutable attributes get a setter. Values received
at construction are the frozen baseline; setters only record pending
changes on top of it until they are committed or cleaned.
"""

from collections.abc import Iterable, Mapping
from types import MappingProxyType
from typing import Any, ClassVar

from vagrant_cloud.core.errors import ConfigurationError, DataTypeError, ValidationError

# =============================================================================
# Unset Sentinel
# =============================================================================


class UnsetType:
    """
    Marker for a value the caller never supplied.

    Compares equal to None (and is falsy) so it can stand in for a missing
    value, but it is a distinct object: outgoing payloads drop it by identity
    while explicit None values are kept.
    """

    _instance: "UnsetType | None" = None

    def __new__(cls) -> "UnsetType":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNSET"

    def __str__(self) -> str:
        return ""

    def __bool__(self) -> bool:
        return False

    def __eq__(self, other: object) -> bool:
        return other is None or other is self

    def __ne__(self, other: object) -> bool:
        return not self.__eq__(other)

    def __hash__(self) -> int:
        return hash(None)

    def __copy__(self) -> "UnsetType":
        return self

    def __deepcopy__(self, memo: dict) -> "UnsetType":
        return self

    def __reduce__(self) -> tuple:
        return (UnsetType, ())


UNSET = UnsetType()


def freeze(value: Any) -> Any:
    """
    Return a read-only copy of value.

    Mappings become MappingProxyType, lists and tuples become tuples and sets
    become frozensets, recursively. Resource objects are stored by reference
    and stay live.
    """
    if isinstance(value, Data):
        return value
    if isinstance(value, Mapping):
        return MappingProxyType({k: freeze(v) for k, v in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(freeze(item) for item in value)
    if isinstance(value, (set, frozenset)):
        return frozenset(freeze(item) for item in value)
    return value


def _names(value: str | Iterable[str] | None) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    return tuple(value)


# =============================================================================
# Attribute Descriptors
# =============================================================================


class Attribute:
    """Read-only accessor for a declared attribute."""

    def __init__(self, name: str):
        self.name = name

    def __set_name__(self, owner: type, name: str) -> None:
        self.name = name

    def __get__(self, instance: "Data | None", owner: type) -> Any:
        if instance is None:
            return self
        return instance[self.name]

    def __set__(self, instance: "Data", value: Any) -> None:
        raise AttributeError(f"attribute '{self.name}' of '{type(instance).__name__}' object is read-only")


class MutableAttribute(Attribute):
    """Accessor for a mutable attribute. Assignment records a pending change."""

    def __set__(self, instance: "Mutable", value: Any) -> None:
        instance._dirty[self.name] = value


def _collect(cls: type, name: str) -> tuple[str, ...]:
    names: list[str] = []
    for klass in reversed(cls.__mro__):
        for attr in klass.__dict__.get(name, ()):
            if attr not in names:
                names.append(attr)
    return tuple(names)


def _install(cls: type, name: str, accessor: type[Attribute]) -> None:
    # Accessors defined in a class body win over generated ones
    current = next((klass.__dict__[name] for klass in cls.__mro__ if name in klass.__dict__), None)
    if current is not None and not isinstance(current, Attribute):
        return
    if type(current) is accessor:
        return
    setattr(cls, name, accessor(name))


# =============================================================================
# Containers
# =============================================================================


class Data:
    """Simple attribute storage with a mapping-like interface."""

    def __init__(self, **opts: Any):
        self._data: Mapping[str, Any] = dict(opts)

    def __getitem__(self, key: str) -> Any:
        return self._data.get(key, UNSET)

    def __repr__(self) -> str:
        return f"<{type(self).__name__}:{id(self):#x}>"


class Immutable(Data):
    """
    Data container with declared attributes and a frozen baseline.

    Subclasses list their attributes in ``attr_required`` and
    ``attr_optional``. Declarations accumulate through inheritance and each
    declared name gets a read-only accessor unless the class defines that
    name itself.
    """

    attr_required: ClassVar[tuple[str, ...]] = ()
    attr_optional: ClassVar[tuple[str, ...]] = ()

    def __init_subclass__(cls, **kwargs: Any):
        super().__init_subclass__(**kwargs)
        cls.attr_required = _collect(cls, "attr_required")
        cls.attr_optional = _collect(cls, "attr_optional")
        for name in cls.attr_required + cls.attr_optional:
            _install(cls, name, Attribute)

    def __init__(self, **opts: Any):
        super().__init__()
        data: dict[str, Any] = {}
        for name in self.attr_required:
            if name not in opts:
                raise ValidationError(f"Missing required parameter `{name}`")
            data[name] = opts[name]
        for name in self.attr_optional:
            if name in opts:
                data[name] = opts[name]

        extras = [k for k in opts if k not in data]
        if extras:
            raise ValidationError(f"Unknown parameters provided: {','.join(extras)}")
        self._data = freeze(data)

    @classmethod
    def attributes(cls) -> tuple[str, ...]:
        """All declared attribute names."""
        return cls.attr_required + cls.attr_optional

    def __repr__(self) -> str:
        values = []
        for name in self.attributes():
            value = self[name]
            if value is None or value is UNSET or str(value) == "":
                continue
            values.append(f"{name}={value!r}")
        return f"<{type(self).__name__}:{id(self):#x} {', '.join(values)}>"


class Mutable(Immutable):
    """
    Immutable container whose ``attr_mutable`` attributes can be changed.

    Changes are kept apart from the baseline until commit() merges them in
    or clean() replaces them with values received from the server.
    """

    attr_mutable: ClassVar[tuple[str, ...]] = ()

    def __init_subclass__(cls, **kwargs: Any):
        super().__init_subclass__(**kwargs)
        cls.attr_mutable = _collect(cls, "attr_mutable")
        declared = cls.attributes()
        for name in cls.attr_mutable:
            if name not in declared:
                raise ConfigurationError(f"Unknown attribute name provided `{name}`")
            _install(cls, name, MutableAttribute)

    @classmethod
    def load(cls, data: Mapping[str, Any] | None = None, **context: Any) -> "Mutable":
        """
        Create an instance from a server response.

        Keys that are not declared attributes are discarded and missing
        required attributes are filled with None.

        Args:
            data: Attribute values, usually a parsed response
            **context: Extra constructor arguments (parent resources)

        Returns:
            New instance

        """
        data = data or {}
        opts = {name: data.get(name) for name in cls.attr_required}
        opts.update({name: data[name] for name in cls.attr_optional if name in data})
        return cls(**context, **opts)

    def __init__(self, **opts: Any):
        self._dirty: dict[str, Any] = {}
        super().__init__(**opts)

    def __getitem__(self, key: str) -> Any:
        if key in self._dirty:
            return self._dirty[key]
        return super().__getitem__(key)

    def is_dirty(self, key: str | None = None, deep: bool = False) -> bool:
        """
        Check if the instance, or a single attribute, has pending changes.

        Args:
            key: Attribute name to check
            deep: Include nested resources (used by subclasses)

        Returns:
            True when changes are pending

        """
        if key is not None:
            return key in self._dirty
        return bool(self._dirty)

    def clean(
        self,
        data: Mapping[str, Any],
        ignores: str | Iterable[str] | None = (),
        only: str | Iterable[str] | None = (),
    ) -> "Mutable":
        """
        Load the given values into the baseline.

        Pending changes for any attribute that is loaded are dropped. Keys
        that are not declared attributes are skipped.

        Args:
            data: Attribute values to load
            ignores: Attribute names to skip
            only: When given, only these attribute names are loaded

        Returns:
            self

        Raises:
            DataTypeError: If data is not a mapping

        """
        if not isinstance(data, Mapping):
            raise DataTypeError(f"Expected type `Mapping` but received `{data!r}`")
        ignores = _names(ignores)
        only = _names(only)
        declared = self.attributes()

        new_data = dict(self._data)
        for key, value in data.items():
            if key in ignores:
                continue
            if only and key not in only:
                continue
            if key in declared:
                new_data[key] = value
                self._dirty.pop(key, None)
        self._data = freeze(new_data)
        return self

    def commit(self) -> "Mutable":
        """Merge pending changes into the baseline."""
        self._data = freeze({**self._data, **self._dirty})
        self._dirty.clear()
        return self
