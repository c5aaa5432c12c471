"""Policy layer that validates LLM-proposed tool calls before execution."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Sequence, Tuple

from ..errors import ToolValidationError
from ..tools.base import ToolRegistry
from ..tools.entity import parse_amount

Verdict = Tuple[bool, Optional[str], Dict[str, Any]]

_TRUE_WORDS = {"true", "yes", "1"}
_FALSE_WORDS = {"false", "no", "0"}


def _present(arguments: Dict[str, Any], key: str) -> bool:
    value = arguments.get(key)
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (list, dict)):
        return bool(value)
    return True


def _any_present(arguments: Dict[str, Any], keys: Sequence[str]) -> bool:
    return any(_present(arguments, key) for key in keys)


class ToolPolicy:
    """Validates tool calls against the registry schemas and per-tool rules.

    Generic checks come from each tool's JSON schema (required fields,
    arrays, numbers, booleans and enums). Rules the schema cannot express,
    such as "an id or a lookup key", live in ``_validate_<tool>`` methods.
    """

    def __init__(self, registry: ToolRegistry) -> None:
        self.registry = registry
        self.logger = logging.getLogger("penguin_brain.tool_policy")

    def validate(self, name: str, arguments: Any) -> Optional[str]:
        """Rejection reason, or None when the call may run."""

        valid, reason, _ = self._evaluate(name, arguments)
        return None if valid else reason

    def check(self, name: str, arguments: Any) -> Dict[str, Any]:
        """Sanitized arguments; raises ``ToolValidationError`` on rejection."""

        valid, reason, sanitized = self._evaluate(name, arguments)
        if not valid:
            self.logger.warning("Tool call rejected: %s", reason, extra={"tool": name})
            raise ToolValidationError(name, reason or "rejected by policy")
        return sanitized

    def _evaluate(self, name: str, arguments: Any) -> Verdict:
        if name not in self.registry:
            return False, f"Tool '{name}' is not allowed", {}
        if not isinstance(arguments, dict):
            return False, "arguments must be a JSON object", {}
        arguments = dict(arguments)
        validator = getattr(self, f"_validate_{name}", None)
        if validator is not None:
            valid, reason, arguments = validator(arguments)
            if not valid:
                return False, reason, arguments
        return self._check_schema(name, arguments)

    def _check_schema(self, name: str, arguments: Dict[str, Any]) -> Verdict:
        spec = self.registry.get(name)
        properties: Dict[str, Dict[str, Any]] = spec.parameters.get("properties", {})
        for field_name in spec.required:
            if not _present(arguments, field_name):
                return False, f"Missing required field: {field_name}", arguments
        for key, value in list(arguments.items()):
            schema = properties.get(key)
            if schema is None or value is None:
                continue
            kind = schema.get("type")
            if kind == "array":
                if not isinstance(value, list):
                    return False, f"{key} must be an array", arguments
                if key in spec.required and not value:
                    return False, f"{key} must not be empty", arguments
            elif kind == "number":
                if isinstance(value, str) and not value.strip():
                    arguments[key] = None
                else:
                    amount = parse_amount(value)
                    if amount is None:
                        return False, f"{key} must be a number", arguments
                    arguments[key] = amount
            elif kind == "boolean" and not isinstance(value, bool):
                word = str(value).strip().lower()
                if word in _TRUE_WORDS:
                    arguments[key] = True
                elif word in _FALSE_WORDS:
                    arguments[key] = False
                else:
                    return False, f"{key} must be true or false", arguments
            elif kind == "string":
                if isinstance(value, (dict, list)):
                    return False, f"{key} must be a string", arguments
                if not isinstance(value, str):
                    arguments[key] = value = str(value)
                enum = schema.get("enum")
                if enum and value.strip():
                    canonical = {option.lower(): option for option in enum}
                    match = canonical.get(value.strip().lower())
                    if match is None:
                        return False, f"{key} must be one of: {', '.join(enum)}", arguments
                    arguments[key] = match
            elif kind == "object" and not isinstance(value, dict):
                return False, f"{key} must be an object", arguments
        return True, None, arguments

    # --- Validators --------------------------------------------------
    def _require_one(self, arguments: Dict[str, Any], keys: Sequence[str], tool: str) -> Verdict:
        if _any_present(arguments, keys):
            return True, None, arguments
        return False, f"{tool} requires one of: {', '.join(keys)}", arguments

    def _validate_create_contact(self, arguments: Dict[str, Any]) -> Verdict:
        for key in ("email", "phone"):
            value = arguments.get(key)
            if value is not None and not isinstance(value, str):
                return False, f"{key} must be a string", arguments
        return True, None, arguments

    def _validate_update_contact(self, arguments: Dict[str, Any]) -> Verdict:
        return self._require_one(arguments, ("client_id", "first_name", "last_name", "email"), "update_contact")

    def _validate_delete_contact(self, arguments: Dict[str, Any]) -> Verdict:
        return self._require_one(arguments, ("client_id", "first_name", "last_name", "email"), "delete_contact")

    def _validate_update_task(self, arguments: Dict[str, Any]) -> Verdict:
        return self._require_one(arguments, ("task_id", "lookup_title"), "update_task")

    def _validate_complete_task(self, arguments: Dict[str, Any]) -> Verdict:
        return self._require_one(arguments, ("task_id", "lookup_title"), "complete_task")

    def _validate_delete_task(self, arguments: Dict[str, Any]) -> Verdict:
        return self._require_one(arguments, ("task_id", "lookup_title"), "delete_task")

    def _validate_update_lead(self, arguments: Dict[str, Any]) -> Verdict:
        return self._require_one(arguments, ("lead_id", "first_name", "last_name"), "update_lead")

    def _validate_delete_lead(self, arguments: Dict[str, Any]) -> Verdict:
        return self._require_one(arguments, ("lead_id", "source", "notes"), "delete_lead")

    def _validate_update_project(self, arguments: Dict[str, Any]) -> Verdict:
        return self._require_one(arguments, ("project_id", "lookup_title", "address"), "update_project")

    def _validate_delete_project(self, arguments: Dict[str, Any]) -> Verdict:
        return self._require_one(arguments, ("project_id", "title"), "delete_project")

    def _validate_update_talent(self, arguments: Dict[str, Any]) -> Verdict:
        return self._require_one(arguments, ("talent_id", "lookup_name"), "update_talent")

    def _validate_delete_talent(self, arguments: Dict[str, Any]) -> Verdict:
        return self._require_one(arguments, ("talent_id", "lookup_name"), "delete_talent")

    def _validate_create_booking(self, arguments: Dict[str, Any]) -> Verdict:
        return self._require_one(arguments, ("talent_id", "talent_name"), "create_booking")

    def _validate_create_invoice(self, arguments: Dict[str, Any]) -> Verdict:
        valid, reason, arguments = self._require_one(arguments, ("client_id", "client_name"), "create_invoice")
        if not valid:
            return valid, reason, arguments
        return self._check_items(arguments)

    def _validate_update_invoice(self, arguments: Dict[str, Any]) -> Verdict:
        return self._check_items(arguments)

    def _check_items(self, arguments: Dict[str, Any]) -> Verdict:
        items = arguments.get("items")
        if items is None:
            return True, None, arguments
        if not isinstance(items, list):
            return False, "items must be an array", arguments
        for index, item in enumerate(items, start=1):
            if not isinstance(item, dict):
                return False, f"items[{index}] must be an object", arguments
            for key in ("quantity", "unit_price"):
                if item.get(key) is not None and parse_amount(item[key]) is None:
                    return False, f"items[{index}].{key} must be a number", arguments
        return True, None, arguments

    def _validate_create_expense(self, arguments: Dict[str, Any]) -> Verdict:
        if parse_amount(arguments.get("amount")) is None:
            return False, "create_expense requires a numeric amount", arguments
        return True, None, arguments

    def _validate_search_knowledge(self, arguments: Dict[str, Any]) -> Verdict:
        query = arguments.get("query")
        if not isinstance(query, str) or not query.strip():
            return False, "search_knowledge requires a query", arguments
        return True, None, arguments


__all__ = ["ToolPolicy"]
