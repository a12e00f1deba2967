"""
Placeholder expansion for step commands.

A `${namespace.path}` placeholder is replaced by the value found under that
path in the pipeline variables; `$$` escapes a literal dollar sign.
"""

import json
import re
from typing import Any, Dict, List, Optional, Set, Union


class VariableSubstitutor:
    """
    Handles variable substitution in command arguments.

    Supports namespaces:
    - project: ${project.name}, ${project.environment}, ${project.session_id}
    - target: ${target.id}, ${target.provider}, ${target.region}, ${target.vars.<key>}
    - steps: ${steps.<name>.outputs.<key>}, ${steps.<name>.status}
    - targets: ${targets.<id>.outputs.<key>} (outputs of upstream pipelines)

    Lists substitute as comma-separated values, which is the inline
    inventory form the configuration runner accepts (`-i host1,host2,`).
    """

    VAR_PATTERN = re.compile(r'(?<!\$)\$\{([^}]+)\}')
    NAMESPACES = ('project', 'target', 'steps', 'targets')

    def __init__(self):
        self.undefined_vars: Set[str] = set()

    def substitute(
        self,
        value: Union[str, List, Dict, Any],
        variables: Dict[str, Any],
        track_undefined: bool = True
    ) -> Union[str, List, Dict, Any]:
        """
        Expand placeholders in a string, or recursively in a list or dict.

        Unresolvable placeholders are left in place and collected in
        `undefined_vars`; with track_undefined they raise ValueError instead.
        """
        self.undefined_vars.clear()
        result = self._substitute_value(value, variables)
        if track_undefined and self.undefined_vars:
            raise ValueError(f"Undefined variables: {sorted(self.undefined_vars)}")
        return result

    def _substitute_value(self, value: Any, variables: Dict[str, Any]) -> Any:
        if isinstance(value, str):
            return self._substitute_string(value, variables)
        elif isinstance(value, (list, tuple)):
            return [self._substitute_value(item, variables) for item in value]
        elif isinstance(value, dict):
            return {k: self._substitute_value(v, variables) for k, v in value.items()}
        else:
            return value

    def _substitute_string(self, text: str, variables: Dict[str, Any]) -> str:
        # $$ is a literal dollar sign
        text = text.replace('$$', '\x00')

        def replace_var(match):
            var_path = match.group(1).strip()
            value = self._resolve_variable(var_path, variables)

            if value is None:
                self.undefined_vars.add(var_path)
                return match.group(0)

            return self._format(value)

        result = self.VAR_PATTERN.sub(replace_var, text)
        return result.replace('\x00', '$')

    @staticmethod
    def _format(value: Any) -> str:
        if isinstance(value, bool):
            return 'true' if value else 'false'
        elif isinstance(value, (int, float, str)):
            return str(value)
        elif isinstance(value, list) and all(isinstance(v, (str, int, float)) for v in value):
            return ','.join(str(v) for v in value)
        else:
            return json.dumps(value, sort_keys=True)

    def _resolve_variable(self, var_path: str, variables: Dict[str, Any]) -> Optional[Any]:
        """Resolve a dotted path like 'targets.aws.outputs.db_endpoint'."""
        parts = var_path.split('.')
        if parts[0] not in self.NAMESPACES:
            return None
        return self._resolve_path(variables.get(parts[0], {}), parts[1:])

    def _resolve_path(self, obj: Any, path: List[str]) -> Optional[Any]:
        current = obj
        for part in path:
            if isinstance(current, dict):
                current = current.get(part)
                if current is None:
                    return None
            else:
                return None
        return current

    def build_variables(
        self,
        project: Optional[Dict[str, Any]] = None,
        target: Optional[Dict[str, Any]] = None,
        steps: Optional[Dict[str, Any]] = None,
        targets: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Build a variables dictionary from its sources."""
        return {
            'project': project or {},
            'target': target or {},
            'steps': steps or {},
            'targets': targets or {},
        }
