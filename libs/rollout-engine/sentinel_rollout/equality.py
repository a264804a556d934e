"""Structural comparison of resource documents."""

from typing import Any


def deep_derivative(desired: Any, actual: Any) -> bool:
    """
    Check whether ``actual`` satisfies ``desired``.

    Unset values in ``desired`` (None, empty strings, empty maps or lists)
    are ignored, maps are compared on the keys of ``desired`` only and lists
    element-wise over the length of ``desired``. Fields the desired document
    does not mention are left to whoever else manages them.

    Args:
        desired: Desired (partial) value
        actual: Observed value

    Returns:
        True if every field set in ``desired`` has the same value in ``actual``
    """
    if desired is None:
        return True

    if isinstance(desired, dict):
        if not desired:
            return True
        if not isinstance(actual, dict) or len(desired) > len(actual):
            return False
        for key, value in desired.items():
            if key not in actual:
                return False
            if not deep_derivative(value, actual[key]):
                return False
        return True

    if isinstance(desired, list):
        if not desired:
            return True
        if not isinstance(actual, list) or len(desired) > len(actual):
            return False
        return all(deep_derivative(d, a) for d, a in zip(desired, actual))

    if isinstance(desired, str) and not desired:
        return True

    if isinstance(desired, bool) or isinstance(actual, bool):
        return desired is actual

    return desired == actual


def deep_equal(a: Any, b: Any) -> bool:
    """
    Structural equality of decoded JSON values.

    Unlike ``==``, booleans, integers and floats never equal each other.
    """
    if type(a) is not type(b):
        return False
    if isinstance(a, dict):
        return a.keys() == b.keys() and all(deep_equal(v, b[k]) for k, v in a.items())
    if isinstance(a, list):
        return len(a) == len(b) and all(deep_equal(x, y) for x, y in zip(a, b))
    return a == b


def merge_patch(target: Any, patch: Any) -> Any:
    """
    Apply a JSON merge patch (RFC 7386) and return the result.

    Maps are merged recursively, None removes a key and everything else,
    lists included, replaces the target value.
    """
    if not isinstance(patch, dict):
        return patch
    result = dict(target) if isinstance(target, dict) else {}
    for key, value in patch.items():
        if value is None:
            result.pop(key, None)
        else:
            result[key] = merge_patch(result.get(key), value)
    return result
