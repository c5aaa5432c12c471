"""Shared plumbing for tools that read and write tenant business rows."""

from __future__ import annotations

import logging
import math
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from ..errors import ExecutionError, VerificationError
from ..store.db import Condition, PenguinDB
from .base import ToolRequest, ToolResult


def arg_text(args: Dict[str, Any], key: str) -> Optional[str]:
    """Stripped string argument, or None when absent or blank."""

    value = args.get(key)
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def clamp_limit(value: Any, default: int, maximum: int) -> int:
    try:
        limit = int(value) if value is not None else default
    except (TypeError, ValueError):
        limit = default
    return max(1, min(limit or default, maximum))


def parse_amount(value: Any) -> Optional[float]:
    """Parse ``60000``, ``"60k"``, ``"$60,000"`` or ``"1.2m"``; None when unparseable."""

    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value).strip().lower().replace("$", "").replace(",", "").replace(" ", "")
    multiplier = 1.0
    if text.endswith("k"):
        text, multiplier = text[:-1], 1_000.0
    elif text.endswith("m"):
        text, multiplier = text[:-1], 1_000_000.0
    try:
        return float(text) * multiplier
    except ValueError:
        return None


def money(amount: Any) -> str:
    value = parse_amount(amount)
    if value is None:
        return "-"
    return f"${value:,.0f}" if value == int(value) else f"${value:,.2f}"


def day(stamp: Optional[str]) -> str:
    return (stamp or "")[:10]


def values_match(expected: Any, actual: Any) -> bool:
    """Compare a requested value with what the store returned."""

    if expected is None or expected == "":
        return actual is None or actual == ""
    if isinstance(expected, bool):
        return actual is not None and bool(actual) == expected
    if isinstance(expected, (int, float)):
        try:
            return math.isclose(float(expected), float(actual), rel_tol=1e-9, abs_tol=1e-6)
        except (TypeError, ValueError):
            return False
    if isinstance(expected, str):
        return isinstance(actual, str) and actual.strip() == expected.strip()
    return expected == actual


def verify_fields(expected: Dict[str, Any], row: Optional[Dict[str, Any]]) -> None:
    """Raise ``VerificationError`` unless every requested field was persisted."""

    if row is None:
        raise VerificationError("row", "present", None)
    for field, value in expected.items():
        if field == "updated_at":
            continue
        if not values_match(value, row.get(field)):
            raise VerificationError(field, value, row.get(field))


class EntityTools:
    """Base class for one group of entity tools bound to a single table.

    Every read and write goes through ``request.company_id``; rows of other
    tenants are invisible.
    """

    table: str = ""
    noun: Tuple[str, str] = ("record", "記錄")

    def __init__(self, db: PenguinDB) -> None:
        self.db = db
        self.logger = logging.getLogger(f"penguin_brain.tools.{self.table or 'entity'}")

    # ------------------------------------------------------------------ #
    # Reads
    # ------------------------------------------------------------------ #

    def _fetch(self, request: ToolRequest, row_id: Optional[str]) -> Optional[Dict[str, Any]]:
        if not row_id:
            return None
        return self.db.get(self.table, str(row_id), request.company_id)

    def _find(
        self,
        request: ToolRequest,
        *,
        where: Iterable[Condition] = (),
        search: Sequence[Tuple[Sequence[str], str]] = (),
        limit: Optional[int] = 5,
        order_by: str = "created_at",
        descending: bool = True,
    ) -> List[Dict[str, Any]]:
        return self.db.select(
            self.table,
            company_id=request.company_id,
            where=where,
            search=search,
            order_by=order_by,
            descending=descending,
            limit=limit,
        )

    def _count(self, request: ToolRequest, where: Iterable[Condition] = ()) -> int:
        return self.db.count(self.table, company_id=request.company_id, where=where)

    # ------------------------------------------------------------------ #
    # Verified writes
    # ------------------------------------------------------------------ #

    def _create_verified(self, request: ToolRequest, values: Dict[str, Any]) -> Dict[str, Any]:
        row = self.db.insert(self.table, {**values, "company_id": request.company_id})
        stored = self._fetch(request, row["id"])
        verify_fields(values, stored)
        self.logger.info("Row created", extra={"table": self.table, "company_id": request.company_id})
        return stored  # type: ignore[return-value]

    def _update_verified(self, request: ToolRequest, row_id: str, values: Dict[str, Any]) -> Dict[str, Any]:
        if not self.db.update(self.table, row_id, values, request.company_id):
            raise ExecutionError(f"{self.table} row disappeared before update")
        stored = self._fetch(request, row_id)
        verify_fields(values, stored)
        self.logger.info(
            "Row updated",
            extra={"table": self.table, "company_id": request.company_id, "fields": sorted(values)},
        )
        return stored  # type: ignore[return-value]

    def _delete_verified(self, request: ToolRequest, row_id: str) -> bool:
        """Delete one row; False when it was already gone."""

        if not self.db.delete(self.table, row_id, request.company_id):
            return False
        if self._fetch(request, row_id) is not None:
            raise VerificationError("deleted", True, False)
        return True

    def _bulk(
        self,
        ids: Iterable[Any],
        operation: Callable[[str], bool],
    ) -> Tuple[int, int, List[Dict[str, str]]]:
        """Apply ``operation`` per id; failures are collected, never raised."""

        done = 0
        errors: List[Dict[str, str]] = []
        for row_id in ids:
            row_id = str(row_id)
            try:
                ok = operation(row_id)
            except ExecutionError as exc:
                self.logger.warning(
                    "Bulk item failed", extra={"table": self.table, "error": str(exc)}
                )
                errors.append({"id": row_id, "error": str(exc)})
                continue
            if ok:
                done += 1
            else:
                errors.append({"id": row_id, "error": "not found"})
        return done, len(errors), errors

    # ------------------------------------------------------------------ #
    # Lookup results
    # ------------------------------------------------------------------ #

    def _found(
        self,
        request: ToolRequest,
        rows: List[Dict[str, Any]],
        filtered: bool,
        public: Callable[[Dict[str, Any]], Dict[str, Any]],
    ) -> ToolResult:
        en, zh = self.noun
        if filtered:
            message = request.msg(
                f"Found {len(rows)} {en}(s) matching your criteria.",
                f"找到 {len(rows)} 個符合條件的{zh}。",
            )
        else:
            message = request.msg(f"Found {len(rows)} {en}(s).", f"找到 {len(rows)} 個{zh}。")
        return ToolResult(
            success=True,
            message=message,
            data=[public(row) for row in rows],
            extras={"count": len(rows)},
        )

    def _stats(
        self,
        request: ToolRequest,
        columns: Dict[str, str],
        where: Iterable[Condition] = (),
    ) -> Dict[str, Any]:
        """Total plus per-value counts for each of ``columns`` (key -> column)."""

        rows = self._find(request, where=where, limit=None)
        stats: Dict[str, Any] = {"total": len(rows)}
        for key, column in columns.items():
            buckets: Dict[str, int] = {}
            for row in rows:
                value = row.get(column) or "UNSET"
                buckets[value] = buckets.get(value, 0) + 1
            stats[key] = buckets
        return stats

    def _not_found(self, request: ToolRequest, term: str) -> ToolResult:
        en, zh = self.noun
        return ToolResult(
            success=False,
            message=request.msg(f"❌ No {en} found matching \"{term}\"", f"❌ 找不到符合「{term}」的{zh}"),
        )

    def _disambiguate(
        self,
        request: ToolRequest,
        tool: str,
        matches: List[Dict[str, Any]],
        *,
        id_key: str,
        describe: Callable[[Dict[str, Any]], str],
        verb: Tuple[str, str],
        extra_args: Optional[Dict[str, Any]] = None,
        noun: Optional[Tuple[str, str]] = None,
    ) -> ToolResult:
        """Multi-candidate payload; nothing is written.

        Each choice carries the arguments needed to re-submit ``tool`` against
        exactly one row. The message identifies rows by their details only.
        """

        en_noun, zh_noun = noun or self.noun
        en_verb, zh_verb = verb
        choices: List[Dict[str, Any]] = []
        lines: List[str] = []
        buttons: List[str] = []
        for position, row in enumerate(matches, start=1):
            label = describe(row)
            choices.append(
                {
                    "label": label,
                    "tool": tool,
                    "arguments": {**(extra_args or {}), id_key: row["id"]},
                    "summary": f"{en_verb} {label}",
                }
            )
            lines.append(f"{position}. {label}")
            button_label = request.msg(f"{en_verb} #{position}", f"{zh_verb}選項 {position}")
            buttons.append(f"[ACTION_BUTTON:{button_label}:{en_verb.lower()} {en_noun} {label}:outline]")
        header = request.msg(
            f"⚠️ Found {len(matches)} {en_noun}s matching. Which one should I {en_verb.lower()}?",
            f"⚠️ 找到 {len(matches)} 個符合的{zh_noun}，請問要{zh_verb}哪一個？",
        )
        return ToolResult(
            success=False,
            message="\n".join([header, "", *lines, "", *buttons]),
            data=[{"label": choice["label"]} for choice in choices],
            extras={"requires_confirmation": True, "choices": choices, "matches": len(matches)},
        )


__all__ = [
    "EntityTools",
    "arg_text",
    "clamp_limit",
    "day",
    "money",
    "parse_amount",
    "values_match",
    "verify_fields",
]
