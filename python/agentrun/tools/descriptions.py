"""Human readable descriptions of tool calls, shown while a tool runs."""

from typing import Any, Callable, Dict

_ACTIONS: Dict[str, Callable[[Dict[str, Any]], str]] = {
  "list_directory": lambda args: f"Listing files in: {args.get('dirPath')}",
  "read_file": lambda args: f"Reading file: {args.get('filePath')}",
  "find_file": lambda args: f'Searching for file: "{args.get("fileName")}"',
  "detect_framework": lambda args: f"Detecting framework in: {args.get('projectPath')}",
  "write_file": lambda args: f"Writing file: {args.get('filePath')}",
  "execute_command": lambda args: f"Running command: {args.get('command')}"
  + (f" (in: {args['workingDirectory']})" if args.get("workingDirectory") else ""),
  "check_service_status": lambda args: f"Checking service status: {args.get('serviceName')}",
  "start_service": lambda args: f"Starting service: {args.get('serviceName')}",
  "stop_service": lambda args: f"Stopping service: {args.get('serviceName')}",
}


def format_action_message(name: str, arguments: Dict[str, Any]) -> str:
  action = _ACTIONS.get(name)
  if action is None:
    return f"{name}..."
  return action(arguments or {})
