"""Per-run execution context and ``{{name}}`` config substitution."""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

_PLACEHOLDER = re.compile(r"\{\{\s*([^{}]+?)\s*\}\}")


@dataclass
class ExecutionContext:
    """Mutable variable bag owned by a single run."""

    execution_id: str
    automation_id: str
    variables: dict[str, Any] = field(default_factory=dict)
    trigger_data: Any = None

    @classmethod
    def create(
        cls,
        execution_id: str,
        automation_id: str,
        initial_variables: Mapping[str, Any] | None = None,
        trigger_data: Any = None,
    ) -> ExecutionContext:
        """Build a context from blueprint variables overlaid with the trigger payload."""
        variables = dict(initial_variables or {})
        if isinstance(trigger_data, Mapping):
            variables.update(trigger_data)
        variables["trigger"] = trigger_data if trigger_data is not None else {}
        return cls(
            execution_id=execution_id,
            automation_id=automation_id,
            variables=variables,
            trigger_data=trigger_data,
        )

    def get(self, name: str, default: Any = None) -> Any:
        return self.variables.get(name, default)

    def set(self, name: str, value: Any) -> None:
        self.variables[name] = value

    def lookup(self, path: str) -> tuple[bool, Any]:
        """Resolve a plain or dotted name (``user.email``) against the variables."""
        if path in self.variables:
            return True, self.variables[path]
        current: Any = self.variables
        for part in path.split("."):
            if isinstance(current, Mapping) and part in current:
                current = current[part]
            elif isinstance(current, list) and part.isdigit() and int(part) < len(current):
                current = current[int(part)]
            else:
                return False, None
        return True, current

    def resolve(self, value: Any) -> Any:
        """Substitute ``{{name}}`` placeholders throughout *value*.

        A string that is exactly one placeholder becomes the variable's value
        with its type intact; placeholders inside longer strings are
        interpolated as text. Unresolved placeholders are left verbatim.
        Returns a new structure; *value* is never modified.
        """
        if isinstance(value, str):
            return self._resolve_string(value)
        if isinstance(value, list):
            return [self.resolve(item) for item in value]
        if isinstance(value, Mapping):
            return {key: self.resolve(item) for key, item in value.items()}
        return value

    def _resolve_string(self, text: str) -> Any:
        whole = _PLACEHOLDER.fullmatch(text.strip())
        if whole:
            found, resolved = self.lookup(whole.group(1))
            return resolved if found else text

        def replace(match: re.Match) -> str:
            found, resolved = self.lookup(match.group(1))
            if not found:
                return match.group(0)
            return "" if resolved is None else str(resolved)

        return _PLACEHOLDER.sub(replace, text)
