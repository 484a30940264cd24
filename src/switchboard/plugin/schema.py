"""JSON Schema validation for tool arguments.

Supports the subset tools declare in practice: ``type`` (including unions),
``properties``, ``required``, ``additionalProperties``, ``enum``, ``items``,
``minimum``/``maximum``, ``minLength``/``maxLength`` and
``minItems``/``maxItems``. Unknown keywords are ignored.
"""

from typing import Any

_TYPE_CHECKS: dict[str, Any] = {
    "string": lambda v: isinstance(v, str),
    "integer": lambda v: isinstance(v, int) and not isinstance(v, bool),
    "number": lambda v: isinstance(v, int | float) and not isinstance(v, bool),
    "boolean": lambda v: isinstance(v, bool),
    "array": lambda v: isinstance(v, list | tuple),
    "object": lambda v: isinstance(v, dict),
    "null": lambda v: v is None,
}


def _type_ok(value: Any, expected: str | list[str]) -> bool:
    names = [expected] if isinstance(expected, str) else expected
    return any(_TYPE_CHECKS.get(name, lambda _v: True)(value) for name in names)


def validate(instance: Any, schema: dict[str, Any], path: str = "$") -> list[str]:
    """Validate an instance against a schema.

    Args:
        instance: Value to validate.
        schema: JSON Schema (subset).
        path: JSON path of ``instance``, used in messages.

    Returns:
        One ``"<path>: <problem>"`` string per violation; empty when valid.
    """
    violations: list[str] = []

    expected = schema.get("type")
    if expected is not None and not _type_ok(instance, expected):
        shown = expected if isinstance(expected, str) else " | ".join(expected)
        violations.append(f"{path}: expected {shown}, got {_json_type(instance)}")
        return violations

    if "enum" in schema and instance not in schema["enum"]:
        violations.append(f"{path}: {instance!r} is not one of {schema['enum']!r}")

    if isinstance(instance, str):
        if "minLength" in schema and len(instance) < schema["minLength"]:
            violations.append(f"{path}: shorter than {schema['minLength']} characters")
        if "maxLength" in schema and len(instance) > schema["maxLength"]:
            violations.append(f"{path}: longer than {schema['maxLength']} characters")

    if isinstance(instance, int | float) and not isinstance(instance, bool):
        if "minimum" in schema and instance < schema["minimum"]:
            violations.append(f"{path}: {instance} is less than {schema['minimum']}")
        if "maximum" in schema and instance > schema["maximum"]:
            violations.append(f"{path}: {instance} is greater than {schema['maximum']}")

    if isinstance(instance, list | tuple):
        if "minItems" in schema and len(instance) < schema["minItems"]:
            violations.append(f"{path}: fewer than {schema['minItems']} items")
        if "maxItems" in schema and len(instance) > schema["maxItems"]:
            violations.append(f"{path}: more than {schema['maxItems']} items")
        items = schema.get("items")
        if isinstance(items, dict):
            for i, item in enumerate(instance):
                violations.extend(validate(item, items, f"{path}[{i}]"))

    if isinstance(instance, dict):
        properties: dict[str, Any] = schema.get("properties", {})
        for name in schema.get("required", []):
            if name not in instance:
                violations.append(f"{path}.{name}: required property missing")
        additional = schema.get("additionalProperties", True)
        for name, value in instance.items():
            if name in properties:
                violations.extend(validate(value, properties[name], f"{path}.{name}"))
            elif additional is False:
                violations.append(f"{path}.{name}: unexpected property")
            elif isinstance(additional, dict):
                violations.extend(validate(value, additional, f"{path}.{name}"))

    return violations


def _json_type(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, int):
        return "integer"
    if isinstance(value, float):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list | tuple):
        return "array"
    if isinstance(value, dict):
        return "object"
    return type(value).__name__
