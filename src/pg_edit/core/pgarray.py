"""PostgreSQL array literal parsing.

The driver returns arrays of types it has no loader for (enum arrays, for
instance) as their text form, ``{a,"b c",NULL}``. These helpers turn that
text into Python lists, casting elements by the declared element type.
"""

from __future__ import annotations

from typing import Any


def element_type(declared_type: str | None) -> str:
    if not declared_type:
        return ""
    return declared_type.removesuffix("[]").lower()


def cast_element(raw: str, declared_type: str | None = None, *, quoted: bool = False) -> Any:
    """Cast one unquoted array element; unparseable numbers stay text."""
    text = raw if quoted else raw.strip()
    if not quoted and text.upper() == "NULL":
        return None

    base = element_type(declared_type)
    if base in ("smallint", "integer", "bigint") or base.startswith("int"):
        try:
            return int(text)
        except ValueError:
            return text
    if base.startswith(("numeric", "decimal", "real", "double precision", "float")):
        try:
            return float(text)
        except ValueError:
            return text
    if base in ("boolean", "bool"):
        return text.lower() in ("t", "true", "1")
    return text


def parse_array_literal(literal: str, declared_type: str | None = None) -> list[Any]:
    """Parse a one-dimensional array literal.

    Supports double-quoted elements with backslash escapes or doubled quotes,
    and unquoted NULL.
    """
    if not literal:
        return []
    body = literal.strip()
    if body.startswith("{") and body.endswith("}"):
        body = body[1:-1]
    if not body:
        return []

    result: list[Any] = []
    current: list[str] = []
    in_quotes = False
    was_quoted = False
    i = 0
    while i < len(body):
        ch = body[i]
        if in_quotes:
            if ch == '"':
                if i + 1 < len(body) and body[i + 1] == '"':
                    current.append('"')
                    i += 2
                    continue
                in_quotes = False
            elif ch == "\\" and i + 1 < len(body):
                current.append(body[i + 1])
                i += 2
                continue
            else:
                current.append(ch)
            i += 1
            continue

        if ch == '"':
            in_quotes = True
            was_quoted = True
        elif ch == ",":
            result.append(cast_element("".join(current), declared_type, quoted=was_quoted))
            current = []
            was_quoted = False
        else:
            current.append(ch)
        i += 1

    result.append(cast_element("".join(current), declared_type, quoted=was_quoted))
    return result
