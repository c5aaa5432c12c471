"""Dispatch one validated tool call to its handler."""

from __future__ import annotations

import logging
import time
from typing import Any, Dict

from ..errors import ExecutionError, VerificationError
from .base import ToolRegistry, ToolRequest, ToolResult


class ToolExecutor:
    """Runs handlers and turns data-store failures into failed results."""

    def __init__(self, registry: ToolRegistry) -> None:
        self.registry = registry
        self.logger = logging.getLogger("penguin_brain.tools.executor")

    def execute(self, name: str, args: Dict[str, Any], request: ToolRequest) -> ToolResult:
        if name not in self.registry:
            return ToolResult(
                success=False,
                message=request.msg(f"Unknown tool: {name}", f"未知的工具：{name}"),
            )
        spec = self.registry.get(name)
        if spec.handler is None:
            return ToolResult(
                success=False,
                message=request.msg(f"Unknown tool: {name}", f"未知的工具：{name}"),
            )
        started = time.perf_counter()
        try:
            result = spec.handler(args, request)
        except VerificationError as exc:
            self.logger.warning(
                "Verification failed: %s",
                exc,
                extra={"tool": name, "conversation_id": request.conversation_id},
            )
            return ToolResult(
                success=False,
                message=request.msg(
                    f"⚠️ The change could not be verified ({exc.field} was not saved as requested). "
                    "Please check the record and try again.",
                    f"⚠️ 無法驗證變更（{exc.field} 未按要求儲存）。請檢查記錄後重試。",
                ),
                extras={"verification_failed": True},
            )
        except ExecutionError as exc:
            self.logger.error(
                "Tool execution failed: %s",
                exc,
                extra={"tool": name, "conversation_id": request.conversation_id},
            )
            return ToolResult(
                success=False,
                message=request.msg(
                    "❌ Something went wrong while saving. Please try again.",
                    "❌ 儲存時發生錯誤，請重試。",
                ),
            )
        except Exception:  # noqa: BLE001 - one failing handler must not end the turn
            self.logger.exception(
                "Tool handler raised",
                extra={"tool": name, "conversation_id": request.conversation_id},
            )
            return ToolResult(
                success=False,
                message=request.msg(
                    f"❌ {name} failed unexpectedly. Please try again.",
                    f"❌ {name} 執行時發生意外錯誤，請重試。",
                ),
                extras={"unexpected_error": True},
            )
        elapsed_ms = int((time.perf_counter() - started) * 1000)
        self.logger.info(
            "Tool executed",
            extra={
                "tool": name,
                "elapsed_ms": elapsed_ms,
                "conversation_id": request.conversation_id,
                "company_id": request.company_id,
            },
        )
        return result


__all__ = ["ToolExecutor"]
