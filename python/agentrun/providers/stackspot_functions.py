"""
Function calls written as text by StackSpot agents.

StackSpot has no native function calling. Agents are instructed to write calls
in one of a few textual forms, which are detected here:

  write_file path=<path> content=<content>
  write_file path=<path>
  <content on the following lines>
  read_file path=<path>
  list_directory dirPath=<path>
  find_file fileName=<name> [startDir=<dir>]
  execute_command command=<command line>
  [TOOL:<name>] {"json": "arguments"} [/TOOL]
"""

import json
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

# Length of each result sent back to the agent
RESULT_PREVIEW_LENGTH = 1000

# Where the content of a write_file call ends
_CONTENT_END = r"(?=\n---|\nwrite_file|\nread_file|\nlist_directory|\nfind_file|\nexecute_command|\Z)"

_CODE_FENCE_START = re.compile(r"^```[\w-]*\n?")
_CODE_FENCE_END = re.compile(r"\n?```$")


@dataclass
class DetectedCall:
  name: str
  arguments: Dict[str, Any]
  position: int


def _clean_content(content: Optional[str]) -> str:
  content = (content or "").strip()
  content = re.sub(r"^content\s*=\s*", "", content, flags=re.IGNORECASE)
  content = _CODE_FENCE_START.sub("", content)
  content = _CODE_FENCE_END.sub("", content)
  return content.strip("\n")


def _write_file(match: re.Match) -> Dict[str, Any]:
  return {"filePath": match.group(1).strip(), "content": _clean_content(match.group(2)), "createDirectories": True}


def _json_arguments(match: re.Match) -> Dict[str, Any]:
  try:
    arguments = json.loads(match.group(2).strip())
  except json.JSONDecodeError:
    return {}
  return arguments if isinstance(arguments, dict) else {}


# (function name or None when the name is the first group, pattern, argument extractor)
_PATTERNS: List[Tuple[Optional[str], re.Pattern, Callable[[re.Match], Dict[str, Any]]]] = [
  (
    "write_file",
    re.compile(r"write_file\s+path\s*=\s*(\S+)[ \t]+content\s*=\s*([\s\S]*?)" + _CONTENT_END, re.IGNORECASE),
    _write_file,
  ),
  (
    "write_file",
    re.compile(r"write_file\s+path\s*=\s*(\S+)[ \t]*\n([\s\S]*?)" + _CONTENT_END, re.IGNORECASE),
    _write_file,
  ),
  (
    "read_file",
    re.compile(r"read_file\s+path\s*=\s*(\S+)", re.IGNORECASE),
    lambda m: {"filePath": m.group(1).strip()},
  ),
  (
    "list_directory",
    re.compile(r"list_directory\s+dirPath\s*=\s*(\S+)", re.IGNORECASE),
    lambda m: {"dirPath": m.group(1).strip()},
  ),
  (
    "find_file",
    re.compile(r"find_file\s+fileName\s*=\s*(\S+)(?:[ \t]+startDir\s*=\s*(\S+))?", re.IGNORECASE),
    lambda m: {"fileName": m.group(1).strip(), "startDir": (m.group(2) or ".").strip()},
  ),
  (
    "execute_command",
    re.compile(r"execute_command\s+command\s*=\s*([^\n]+)", re.IGNORECASE),
    lambda m: {"command": m.group(1).strip()},
  ),
  (
    None,
    re.compile(r"\[TOOL:(\w+)\]\s*([\s\S]*?)\s*\[/TOOL\]", re.IGNORECASE),
    _json_arguments,
  ),
]


def detect_function_calls(text: str) -> List[DetectedCall]:
  """
  Find the function calls written in ``text``, in the order they appear.

  Calls without arguments are ignored, and a call detected by more than one
  pattern is only reported once.
  """
  detected: List[DetectedCall] = []
  seen = set()
  for name, pattern, extract in _PATTERNS:
    for match in pattern.finditer(text or ""):
      arguments = extract(match)
      if not arguments:
        continue
      function_name = name or match.group(1)
      key = (function_name, json.dumps(arguments, sort_keys=True))
      if key in seen:
        continue
      seen.add(key)
      detected.append(DetectedCall(name=function_name, arguments=arguments, position=match.start()))

  detected.sort(key=lambda call: call.position)
  return detected


def format_function_results(results: List[Tuple[str, str, bool]]) -> str:
  """Render (function name, output, success) triples as text for the agent."""
  if not results:
    return ""

  lines = ["[Function results]:"]
  for name, output, success in results:
    lines.append("")
    lines.append(f"{'OK' if success else 'FAILED'} {name}:")
    if len(output) > RESULT_PREVIEW_LENGTH:
      lines.append(output[:RESULT_PREVIEW_LENGTH] + "...")
      lines.append("[Result truncated]")
    else:
      lines.append(output)
  return "\n".join(lines)
