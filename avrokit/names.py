"""Avro full names: validation and namespace resolution."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

NULL_NAMESPACE = ""


class InvalidNameError(ValueError):
    """Raised when one or more components of an Avro name are invalid."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__("schema name ought to " + message)


def _valid_first(ch: str) -> bool:
    return ("A" <= ch <= "Z") or ("a" <= ch <= "z") or ch == "_"


def _valid_other(ch: str) -> bool:
    return _valid_first(ch) or ("0" <= ch <= "9")


def _check_component(component: str) -> None:
    if not component:
        raise InvalidNameError("be non-empty string")
    if not _valid_first(component[0]):
        raise InvalidNameError("start with [A-Za-z_]: " + component)
    if not all(_valid_other(ch) for ch in component[1:]):
        raise InvalidNameError(
            "have second and remaining characters contain only [A-Za-z0-9_]: "
            + component
        )


@dataclass(frozen=True)
class Name:
    """An Avro name: its full name and the namespace it belongs to."""

    full_name: str
    namespace: str = NULL_NAMESPACE

    def __str__(self) -> str:
        return self.full_name

    def short(self) -> str:
        """Return the name without its namespace prefix."""
        return self.full_name.rpartition(".")[2]


def new_name(
    name: str,
    namespace: str = NULL_NAMESPACE,
    enclosing_namespace: str = NULL_NAMESPACE,
    relaxed: bool = False,
) -> Name:
    """Resolve a name against its namespaces and validate every component.

    With ``relaxed`` set, the first component of the full name may be empty.
    """
    if "." in name:
        full_name = name
        resolved_namespace = name[: name.rindex(".")]
    elif namespace != NULL_NAMESPACE:
        full_name = f"{namespace}.{name}"
        resolved_namespace = namespace
    elif enclosing_namespace != NULL_NAMESPACE:
        full_name = f"{enclosing_namespace}.{name}"
        resolved_namespace = enclosing_namespace
    else:
        full_name = name
        resolved_namespace = NULL_NAMESPACE

    for index, component in enumerate(full_name.split(".")):
        if index == 0 and relaxed and component == "":
            continue
        _check_component(component)

    return Name(full_name, resolved_namespace)


def name_from_schema_map(
    enclosing_namespace: str,
    schema_map: Mapping[str, Any],
    relaxed: bool = False,
) -> Name:
    """Build a Name from the ``name`` and ``namespace`` keys of a schema map."""
    if "name" not in schema_map:
        raise ValueError("schema ought to have name key")
    name = schema_map["name"]
    if not isinstance(name, str) or name == NULL_NAMESPACE:
        raise ValueError(
            "schema name ought to be non-empty string; "
            f"received: {type(name).__name__}: {name!r}"
        )
    namespace = schema_map.get("namespace", NULL_NAMESPACE)
    if not isinstance(namespace, str):
        raise ValueError(
            "schema namespace, if provided, ought to be a string; "
            f"received: {type(namespace).__name__}: {namespace!r}"
        )
    return new_name(name, namespace, enclosing_namespace, relaxed)