"""Construction recipes.

A recipe is built once, at registration time, from the static metadata of a
class or factory function: the callable to invoke plus the component key of
every parameter it wants injected. Resolution then only walks the recipe and
never inspects signatures again.
"""

from __future__ import annotations

import inspect
import logging
import types
import typing
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, TypeVar, Union, get_args, get_origin, get_type_hints

from ._errors import NoUsableConstructorError, describe


logger = logging.getLogger(__name__)

if TYPE_CHECKING:
    from collections.abc import Callable

F = TypeVar("F", bound="Callable[..., Any]")

_INJECT_MARKER = "__lazybind_inject__"
_SELF = getattr(typing, "Self", None)
_UNION_TYPES: tuple[Any, ...] = (Union, types.UnionType)


def inject(func: F) -> F:
    """Mark the constructor the container must use.

    Only needed when a class exposes more than one public constructor, i.e.
    `__init__` plus alternate-constructor classmethods:

      class Client:
          def __init__(self, session: Session): ...

          @inject
          @classmethod
          def from_settings(cls, settings: Settings) -> Client: ...
    """
    target = func.__func__ if isinstance(func, (classmethod, staticmethod)) else func
    setattr(target, _INJECT_MARKER, True)
    return func


def is_marked(func: object) -> bool:
    target = func.__func__ if isinstance(func, (classmethod, staticmethod)) else func
    return bool(getattr(target, _INJECT_MARKER, False))


@dataclass(frozen=True)
class Parameter:
    name: str
    key: Any
    keyword_only: bool = False
    default: Any = inspect.Parameter.empty

    @property
    def required(self) -> bool:
        return self.default is inspect.Parameter.empty


@dataclass(frozen=True)
class Recipe:
    origin: Any  # the registered class or factory, used in messages
    target: Callable[..., Any]
    parameters: tuple[Parameter, ...]

    def __call__(self, args: list[Any], kwargs: dict[str, Any]) -> Any:
        return self.target(*args, **kwargs)


@dataclass(frozen=True)
class Constructor:
    """One publicly visible way of building a class."""

    name: str
    call: Callable[..., Any]
    hints_source: Callable[..., Any]
    marked: bool


def public_constructors(cls: type) -> list[Constructor]:
    """Enumerate `__init__` and the public alternate-constructor classmethods of `cls`.

    Abstract classes and protocols have no usable `__init__`. A classmethod
    counts as a constructor when its return annotation names `cls` itself.
    """
    found: list[Constructor] = []

    if not inspect.isabstract(cls) and not is_protocol(cls):
        init = inspect.getattr_static(cls, "__init__")
        found.append(Constructor(name="__init__", call=cls, hints_source=init, marked=is_marked(init)))

    for name in sorted(dir(cls)):
        if name.startswith("_"):
            continue
        attr = inspect.getattr_static(cls, name)
        if isinstance(attr, classmethod) and _returns_class(attr.__func__, cls):
            found.append(
                Constructor(name=name, call=getattr(cls, name), hints_source=attr.__func__, marked=is_marked(attr))
            )

    return found


def select_constructor(cls: type) -> Constructor:
    """Pick the single constructor to inject through.

    - no public constructor: error
    - exactly one: that one
    - several: the one marked with `@inject`; none or more than one marked is an error.
    """
    candidates = public_constructors(cls)

    if not candidates:
        msg = f"{describe(cls)} has no public constructor (abstract classes and protocols cannot be built)."
        raise NoUsableConstructorError(msg)

    if len(candidates) == 1:
        return candidates[0]

    marked = [c for c in candidates if c.marked]
    if len(marked) == 1:
        return marked[0]

    names = ", ".join(c.name for c in (marked or candidates))
    if not marked:
        msg = f"{describe(cls)} has several public constructors ({names}); mark the one to use with @inject."
    else:
        msg = f"{describe(cls)} has more than one constructor marked with @inject ({names})."
    raise NoUsableConstructorError(msg)


def recipe_for(target: Any) -> Recipe:
    """Build the recipe of a class (through its selected constructor) or of a factory function."""
    if inspect.isclass(target):
        ctor = select_constructor(target)
        if ctor.name == "__init__":
            sig = _class_signature(target)
        else:
            sig = inspect.signature(ctor.call)
        hints = _get_type_hints(ctor.hints_source, target)
        return Recipe(origin=target, target=ctor.call, parameters=_parameters(target, sig, hints))

    if callable(target):
        sig = inspect.signature(target)
        hints = _get_type_hints(target, target)
        return Recipe(origin=target, target=target, parameters=_parameters(target, sig, hints))

    msg = f"Expected a class or a factory function, got {target!r}"
    raise TypeError(msg)


def default_key(target: Any) -> Any:
    """Key a class or factory is registered under when no alias is given."""
    if inspect.isclass(target):
        return target

    ret = _get_type_hints(target, target).get("return", inspect.Signature.empty)
    key = dependency_key(ret) if ret not in (inspect.Signature.empty, None, type(None)) else None
    if key is None or isinstance(key, str):
        msg = f"Cannot infer a key for factory {describe(target)}: annotate its return type or pass `key`."
        raise ValueError(msg)
    return key


def provided_type(target: Any) -> type | None:
    """Class a target produces, when it can be told without calling it."""
    if inspect.isclass(target):
        return target
    ret = _get_type_hints(target, target).get("return", inspect.Signature.empty)
    if ret is inspect.Signature.empty:
        return None
    key = dependency_key(ret)
    return key if inspect.isclass(key) else None


def dependency_key(annotation: Any) -> Any:
    """Component key of an annotation: its base type, generic arguments ignored.

    `Optional[X]` maps to `X`. Returns None for a union with several members.
    """
    origin = get_origin(annotation)
    if origin in _UNION_TYPES:
        members = [a for a in get_args(annotation) if a is not type(None)]
        if len(members) != 1:
            return None
        return dependency_key(members[0])
    return origin or annotation


def _parameters(owner: Any, sig: inspect.Signature, hints: dict[str, Any]) -> tuple[Parameter, ...]:
    params: list[Parameter] = []

    for name, p in sig.parameters.items():
        # never injected
        if p.kind in (p.VAR_POSITIONAL, p.VAR_KEYWORD):
            continue

        ann = hints.get(name, p.annotation)
        if ann is inspect.Parameter.empty:
            # unannotated but defaulted: always takes its default
            if p.default is not inspect.Parameter.empty:
                params.append(Parameter(name=name, key=None, keyword_only=p.kind is p.KEYWORD_ONLY, default=p.default))
                continue
            msg = f"Parameter '{name}' of {describe(owner)} has no type annotation and no default."
            raise NoUsableConstructorError(msg)

        if isinstance(ann, str):
            msg = f"Cannot evaluate annotation {ann!r} of parameter '{name}' of {describe(owner)}."
            raise NoUsableConstructorError(msg)

        key = dependency_key(ann)
        if key is None:
            msg = f"Parameter '{name}' of {describe(owner)} is annotated with an ambiguous union {ann!r}."
            raise NoUsableConstructorError(msg)

        params.append(
            Parameter(name=name, key=key, keyword_only=p.kind is p.KEYWORD_ONLY, default=p.default)
        )

    return tuple(params)


def _class_signature(cls: type) -> inspect.Signature:
    if inspect.getattr_static(cls, "__init__") is object.__init__ and cls.__new__ is object.__new__:
        return inspect.Signature()
    try:
        return inspect.signature(cls)
    except (TypeError, ValueError) as exc:
        msg = f"Cannot inspect the constructor of {describe(cls)}: {exc}"
        raise NoUsableConstructorError(msg) from exc


def _returns_class(func: Callable[..., Any], cls: type) -> bool:
    try:
        ret = inspect.signature(func).return_annotation
    except NameError:
        return False

    if ret is inspect.Signature.empty:
        return False
    if ret is cls or (_SELF is not None and ret is _SELF):
        return True
    if isinstance(ret, str):
        return ret in (cls.__name__, cls.__qualname__, "Self")
    return False


def _get_type_hints(func: Any, owner: Any) -> dict[str, Any]:
    try:
        hints = get_type_hints(func)
    except TypeError:
        hints = {}
    except NameError as exc:
        logger.warning("'%s' name error retrieving %s type hints", exc.name, describe(owner))
        hints = {}

    return hints


if hasattr(typing, "is_protocol"):
    # https://docs.python.org/3/library/typing.html#typing.is_protocol
    def is_protocol(tp: Any) -> bool:
        return inspect.isclass(tp) and typing.is_protocol(tp)

else:

    def is_protocol(tp: Any) -> bool:
        """Detect whether 'tp' is a typing.Protocol class itself (not an implementation of one)."""
        return inspect.isclass(tp) and bool(getattr(tp, "_is_protocol", False))


def validate_binding(key: Any, impl: type) -> None:
    """Validate that class `impl` can stand in for `key` when the key is a class.

    - For normal classes/ABCs: require issubclass(impl, key).
    - For Protocols: nominal via MRO, otherwise structural conformance.

    String keys cannot be validated statically.
    """
    if not inspect.isclass(key):
        return

    if not is_protocol(key):
        if not issubclass(impl, key):
            msg = f"Implementation {impl.__name__} must be a subclass of {key.__name__}"
            raise TypeError(msg)
        return

    if key in getattr(impl, "__mro__", ()):
        return

    _validate_structural_conformance(key, impl)


def validate_instance(key: Any, instance: object) -> None:
    """Same as `validate_binding` for a pre-built value; `isinstance` honours test doubles."""
    if not inspect.isclass(key):
        return

    if not is_protocol(key):
        if not isinstance(instance, key):
            msg = f"Instance of {type(instance).__name__} is not an instance of {key.__name__}"
            raise TypeError(msg)
        return

    if key in type(instance).__mro__:
        return

    _validate_structural_conformance(key, instance)


def _validate_structural_conformance(proto_cls: type, impl: object) -> None:
    """Best-effort structural conformance: presence + callability + positional arity."""
    impl_name = impl.__name__ if inspect.isclass(impl) else type(impl).__name__
    missing: list[str] = []
    mismatches: list[str] = []

    try:
        proto_hints = get_type_hints(proto_cls)
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
            mismatches.append(f"{name}: not callable on {impl_name}")
            continue

        try:
            proto_arity = _positional_arity(inspect.signature(proto_attr))
            impl_sig = inspect.signature(impl_attr)
        except (TypeError, ValueError) as e:
            mismatches.append(f"{name}: unable to compare signatures ({e})")
            continue

        # *args takes any number of positionals
        if any(p.kind is p.VAR_POSITIONAL for p in impl_sig.parameters.values()):
            continue

        impl_arity = _positional_arity(impl_sig)
        if impl_arity < proto_arity:
            mismatches.append(
                f"{name}: impl has fewer required positional params ({impl_arity}) than protocol ({proto_arity})"
            )

    if missing or mismatches:
        msgs = []
        if missing:
            msgs.append(f"missing members: {', '.join(missing)}")
        if mismatches:
            msgs.append(f"signature mismatches: {', '.join(mismatches)}")

        msg = (
            f"Implementation {impl_name} does not structurally conform to protocol "
            f"{proto_cls.__name__}: {'; '.join(msgs)}"
        )
        raise TypeError(msg)


def _positional_arity(sig: inspect.Signature) -> int:
    return sum(
        1
        for p in sig.parameters.values()
        if p.name != "self"
        and p.kind in (p.POSITIONAL_ONLY, p.POSITIONAL_OR_KEYWORD)
        and p.default is inspect.Parameter.empty
    )
