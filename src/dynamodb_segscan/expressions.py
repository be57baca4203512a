from typing import Any, Dict, Optional, Sequence

from .models import Expression


def infer_attribute_value(raw: Optional[str]) -> Dict[str, Any]:
    """
    Guess a DynamoDB AttributeValue from a command-line string.
    Returns {"S": "..."} | {"N": "..."} | {"BOOL": True/False} | {"NULL": True}
    """
    if raw is None:
        return {"NULL": True}

    s = str(raw).strip()

    if s.lower() in ("null", "none"):
        return {"NULL": True}

    if s.lower() in ("true", "false"):
        return {"BOOL": s.lower() == "true"}

    # Numbers go over the wire as strings; scientific notation is fine.
    try:
        float(s)
        return {"N": s}
    except ValueError:
        pass

    return {"S": s}


def equality_filter(fields: Sequence[str], values: Sequence[Optional[str]],
                    logic: str = "AND") -> Expression:
    """
    One "#fN = :vN" clause per field/value pair, joined with logic.

    >>> equality_filter(["status"], ["ACTIVE"]).expression
    '(#f0 = :v0)'
    """
    if logic not in ("AND", "OR"):
        raise ValueError(f"logic must be AND or OR, got {logic!r}")
    if len(fields) != len(values):
        raise ValueError("fields and values must have the same length")

    parts, names, vals = [], {}, {}
    for i, (name, raw) in enumerate(zip(fields, values)):
        if not name:
            raise ValueError("empty filter field")
        name_key, value_key = f"#f{i}", f":v{i}"
        names[name_key] = name
        vals[value_key] = infer_attribute_value(raw)
        parts.append(f"({name_key} = {value_key})")

    return Expression(f" {logic} ".join(parts), names, vals)
