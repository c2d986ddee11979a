import inspect
import json
import re
import traceback

from functools import wraps
from typing import Any, Callable, Dict, Optional, Union, get_args, get_origin, get_type_hints

from docstring_parser import parse

from ..logs import InfoContext, get_logger

# Largest JSON argument string accepted from a model
MAX_ARGUMENT_SIZE = 1024 * 1024

_TRUE_STRINGS = ("true", "1", "yes", "on")
_FALSE_STRINGS = ("false", "0", "no", "off")


class Tool(InfoContext):
  """
  Wraps a plain or async Python function as a tool the model can call.

  The OpenAI-style function spec is derived from the signature, the type hints
  and the docstring. ``invoke`` validates and coerces the arguments against the
  signature and never raises: any failure becomes a ``Tool execution failed:``
  string that is sent back to the model.
  """

  def __init__(self, func: Callable, name: Optional[str] = None, description: Optional[str] = None):
    self.logger = get_logger("tool")
    self.name, self._spec = function_spec(func, name=name, description=description)
    if re.match(r"^[a-zA-Z0-9_-]+$", self.name) is None:
      raise ValueError(f"Tool name may only contain [a-zA-Z0-9_-] characters: '{self.name}'")
    self.signature = inspect.signature(func)
    self.type_hints = _type_hints(func)
    self.func = _as_async(func)

  @property
  def spec(self) -> dict:
    return self._spec

  async def invoke(self, arguments: Union[str, Dict[str, Any], None]) -> str:
    with self.info(f"Invoke tool: '{self.name}'", f"Invoked tool: '{self.name}'"):
      self.logger.debug(f"The tool arguments are: {arguments}")
      try:
        args = self.prepare_arguments(arguments)
        result = await self.func(**args)
        response = result if isinstance(result, str) else json.dumps(result, indent=2, default=str)
        self.logger.debug(f"The tool call succeeded: {response[:200]}")
      except Exception as e:
        self.logger.error(f"Tool '{self.name}' execution failed: {type(e).__name__}: {e}")
        self.logger.debug(traceback.format_exc())
        response = f"Tool execution failed: {type(e).__name__}: {e}"
      return response

  def prepare_arguments(self, arguments: Union[str, Dict[str, Any], None]) -> Dict[str, Any]:
    """Parse, validate and coerce the arguments of a call."""
    if arguments is None:
      return {}
    if isinstance(arguments, str):
      arguments = _parse_json_object(arguments)
    if not isinstance(arguments, dict):
      raise ValueError(f"Tool arguments must be an object, got {type(arguments).__name__}")

    self._check_names(arguments)
    return {name: self._coerce(name, value) for name, value in arguments.items()}

  def _check_names(self, args: Dict[str, Any]) -> None:
    accepts_kwargs = any(p.kind == inspect.Parameter.VAR_KEYWORD for p in self.signature.parameters.values())
    if not accepts_kwargs:
      extra = set(args) - set(self.signature.parameters)
      if extra:
        raise ValueError(f"Unexpected arguments: {', '.join(sorted(extra))}")

    missing = [
      name
      for name, p in self.signature.parameters.items()
      if p.default is inspect.Parameter.empty
      and p.kind not in (inspect.Parameter.VAR_KEYWORD, inspect.Parameter.VAR_POSITIONAL)
      and name not in args
    ]
    if missing:
      raise ValueError(f"Missing required arguments: {', '.join(sorted(missing))}")

  def _coerce(self, name: str, value: Any) -> Any:
    expected = self.type_hints.get(name)
    if expected is None or value is None:
      return value

    # Optional[X] and X | None coerce to X
    if get_origin(expected) is Union or type(expected).__name__ == "UnionType":
      candidates = [t for t in get_args(expected) if t is not type(None)]
      if len(candidates) != 1:
        return value
      expected = candidates[0]

    try:
      coerced = coerce_value(value, expected)
    except (TypeError, ValueError):
      raise ValueError(
        f"Argument '{name}' has invalid type: expected {getattr(expected, '__name__', expected)}, "
        f"got {type(value).__name__} (value: {value!r})"
      )
    if type(coerced) is not type(value):
      self.logger.debug(f"Coerced argument '{name}': {value!r} -> {coerced!r}")
    return coerced


def coerce_value(value: Any, expected: Any) -> Any:
  """
  Convert a JSON decoded value to ``expected`` where the conversion is unambiguous.

  Models frequently send numbers and booleans as strings.
  """
  if expected is bool:
    if isinstance(value, bool):
      return value
    if isinstance(value, str):
      if value.lower() in _TRUE_STRINGS:
        return True
      if value.lower() in _FALSE_STRINGS:
        return False
      raise ValueError(f"Cannot coerce string '{value}' to bool")
    if isinstance(value, (int, float)):
      return bool(value)
    raise TypeError(f"Cannot coerce {type(value).__name__} to bool")

  if expected is int:
    if isinstance(value, int) and not isinstance(value, bool):
      return value
    if isinstance(value, (str, float)):
      return int(value)
    raise TypeError(f"Cannot coerce {type(value).__name__} to int")

  if expected is float:
    if isinstance(value, float):
      return value
    if isinstance(value, (str, int)) and not isinstance(value, bool):
      return float(value)
    raise TypeError(f"Cannot coerce {type(value).__name__} to float")

  if expected is str:
    return value if isinstance(value, str) else str(value)

  origin = get_origin(expected) or expected
  if origin in (list, dict) and not isinstance(value, origin):
    raise TypeError(f"Expected {origin.__name__}, got {type(value).__name__}")
  return value


def _parse_json_object(raw: str) -> Dict[str, Any]:
  if raw.strip() == "":
    return {}
  if len(raw) > MAX_ARGUMENT_SIZE:
    raise ValueError(f"JSON argument too large: {len(raw):,} bytes (max: {MAX_ARGUMENT_SIZE:,})")
  try:
    parsed = json.loads(raw)
  except json.JSONDecodeError as e:
    raise ValueError(f"Invalid JSON format: {e}")
  if not isinstance(parsed, dict):
    raise ValueError(f"JSON argument must be an object, got {type(parsed).__name__}")
  return parsed


def _type_hints(func: Callable) -> Dict[str, Any]:
  try:
    return get_type_hints(func)
  except Exception:
    return {}


def _as_async(f: Callable) -> Callable:
  @wraps(f)
  async def wrapper(**kwargs):
    r = f(**kwargs)
    if inspect.isawaitable(r):
      return await r
    return r

  return wrapper


def function_spec(f: Callable, name: Optional[str] = None, description: Optional[str] = None) -> tuple[str, dict]:
  f_name = name or f.__name__
  docstring = parse(f.__doc__) if f.__doc__ else None
  if description is None:
    if docstring is not None and docstring.short_description:
      description = "\n\n".join(part for part in (docstring.short_description, docstring.long_description) if part)
    else:
      description = f"Function {f_name}"
  return f_name, {
    "type": "function",
    "function": {"name": f_name, "description": description, "parameters": parameters_spec(f, docstring)},
  }


def parameters_spec(f: Callable, docstring=None) -> dict:
  spec = {"type": "object", "properties": {}, "required": []}
  hints = _type_hints(f)
  documented = {p.arg_name: p for p in docstring.params} if docstring is not None else {}

  for p_name, p in inspect.signature(f).parameters.items():
    if p.kind in (inspect.Parameter.VAR_KEYWORD, inspect.Parameter.VAR_POSITIONAL):
      continue
    doc = documented.get(p_name)
    # a type named in the docstring wins over the annotation
    p_type = doc.type_name if doc is not None and doc.type_name else _type_name(hints.get(p_name))
    spec["properties"][p_name] = {
      "type": to_json_schema_type(p_type),
      "description": (doc.description if doc is not None and doc.description else f"parameter {p_name}"),
    }
    if p.default is inspect.Parameter.empty:
      spec["required"].append(p_name)

  return spec


def _type_name(hint: Any) -> str:
  if hint is None:
    return "str"
  if get_origin(hint) is Union or type(hint).__name__ == "UnionType":
    candidates = [t for t in get_args(hint) if t is not type(None)]
    if len(candidates) == 1:
      hint = candidates[0]
  hint = get_origin(hint) or hint
  return getattr(hint, "__name__", str(hint))


def to_json_schema_type(p_type: str) -> str:
  return {
    "bool": "boolean",
    "int": "integer",
    "float": "number",
    "str": "string",
    "list": "array",
    "dict": "object",
  }.get(p_type, "string")
