import inspect
from datetime import date
from inspect import Parameter
from types import NoneType, UnionType
from typing import Any, Dict, List, Union, get_args, get_origin

from fastcore.basics import first, listify, str2bool, str2date, str2int

from ..errors import BadRequestError

empty = Parameter.empty


def _mk_list(t, v): return [t(o) for o in listify(v)]


def _fix_anno(t, o):
    "Cast a `str` (or list of `str`) payload value to type `t` (or first type in `t` if union)"
    origin = get_origin(t)
    if origin is Union or origin is UnionType or origin in (list, List):
        t = first(o for o in get_args(t) if o != NoneType)
    d = {bool: str2bool, int: str2int, date: str2date}
    res = d.get(t, t)
    if origin in (list, List): return _mk_list(res, o)
    if not isinstance(o, (str, list, tuple)): return o
    return res(o[-1]) if isinstance(o, (list, tuple)) else res(o)


def allows_none(anno) -> bool:
    "True for `Optional[...]`, `X | None`, `None` and `Any` annotations"
    if anno is Any or anno is None or anno is NoneType: return True
    origin = get_origin(anno)
    return (origin is Union or origin is UnionType) and NoneType in get_args(anno)


def coerce(anno, value):
    "Convert `value` to `anno` where it arrived as text, e.g. from a query string"
    if anno is empty or anno is Any or value is None: return value
    if not isinstance(value, str) and get_origin(anno) not in (list, List): return value
    try: return _fix_anno(anno, value)
    except TypeError: return value


def resolve_arguments(signature: inspect.Signature, payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Map payload keys onto an action's parameters.

    Each parameter takes the payload value, else its default, else ``None``
    when its annotation allows it.

    Raises:
        BadRequestError: for a missing required parameter or a value that
            cannot be converted to the parameter's type
    """
    params = list(signature.parameters.values())
    if params and params[0].name == "self":
        params.pop(0)

    kwargs: Dict[str, Any] = {}
    extra_target = None
    for p in params:
        if p.kind is Parameter.VAR_KEYWORD:
            extra_target = p
            continue
        if p.kind is Parameter.VAR_POSITIONAL:
            continue
        if p.name in payload:
            try:
                kwargs[p.name] = coerce(p.annotation, payload[p.name])
            except ValueError:
                raise BadRequestError(f"Invalid value for parameter: {p.name}") from None
        elif p.default is not empty:
            kwargs[p.name] = p.default
        elif allows_none(p.annotation):
            kwargs[p.name] = None
        else:
            raise BadRequestError(f"Missing required parameter: {p.name}")

    if extra_target is not None:
        for key, value in payload.items():
            if key not in kwargs:
                kwargs[key] = value
    return kwargs
