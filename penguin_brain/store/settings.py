"""Per-user settings: assistant profile, roles, LLM connections and the secret vault."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from ..config import CONFIG
from ..errors import AuthConfigError
from ..llm.providers import LLMConnection, requires_api_key
from .db import PenguinDB

SUPER_ADMIN = "SUPER_ADMIN"


@dataclass(frozen=True)
class Profile:
    assistant_name: str
    learning_enabled: bool = True


class SettingsStore:
    """Reads user configuration needed before a turn can start."""

    def __init__(self, db: PenguinDB) -> None:
        self.db = db
        self.logger = logging.getLogger("penguin_brain.settings")

    def _profile_row(self, user_id: str) -> Optional[Dict[str, Any]]:
        rows = self.db.select("profiles", where=[("user_id", "=", user_id)], order_by="user_id", limit=1)
        return rows[0] if rows else None

    def profile(self, user_id: str) -> Profile:
        row = self._profile_row(user_id) or {}
        learning = row.get("learning_enabled")
        return Profile(
            assistant_name=(row.get("assistant_name") or CONFIG.agent.default_assistant_name),
            learning_enabled=True if learning is None else bool(learning),
        )

    def save_profile(
        self,
        user_id: str,
        *,
        assistant_name: Optional[str] = None,
        learning_enabled: Optional[bool] = None,
    ) -> Profile:
        values: Dict[str, Any] = {}
        if assistant_name is not None:
            values["assistant_name"] = assistant_name
        if learning_enabled is not None:
            values["learning_enabled"] = learning_enabled
        existing = self._profile_row(user_id)
        if existing is None:
            self.db.insert("profiles", {"user_id": user_id, **values})
        elif values:
            self.db.update("profiles", existing["id"], values)
        return self.profile(user_id)

    def roles(self, user_id: str) -> List[str]:
        rows = self.db.select("user_roles", where=[("user_id", "=", user_id)], order_by="role")
        return [row["role"] for row in rows]

    def is_super_admin(self, user_id: str) -> bool:
        return SUPER_ADMIN in self.roles(user_id)

    def grant_role(self, user_id: str, role: str) -> None:
        if role not in self.roles(user_id):
            self.db.insert("user_roles", {"user_id": user_id, "role": role})

    # ------------------------------------------------------------------ #
    # Vault
    # ------------------------------------------------------------------ #

    def store_secret(self, secret: str) -> str:
        return self.db.insert("vault_secrets", {"secret": secret})["id"]

    def resolve_secret(self, vault_id: str) -> Optional[str]:
        row = self.db.get("vault_secrets", vault_id)
        return row["secret"] if row else None

    # ------------------------------------------------------------------ #
    # LLM connections
    # ------------------------------------------------------------------ #

    def save_connection(
        self,
        user_id: str,
        provider: str,
        model: str,
        *,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Store a new active connection and deactivate the previous ones."""

        for row in self.db.select(
            "llm_connections", where=[("user_id", "=", user_id), ("is_active", "=", True)]
        ):
            self.db.update("llm_connections", row["id"], {"is_active": False})
        vault_id = self.store_secret(api_key) if api_key else None
        return self.db.insert(
            "llm_connections",
            {
                "user_id": user_id,
                "provider": provider,
                "model": model,
                "api_key_vault_id": vault_id,
                "base_url": base_url,
                "is_active": True,
            },
        )

    def active_connection(self, user_id: str) -> Optional[Dict[str, Any]]:
        rows = self.db.select(
            "llm_connections",
            where=[("user_id", "=", user_id), ("is_active", "=", True)],
            limit=1,
        )
        return rows[0] if rows else None

    def resolve_llm_connection(self, user_id: str) -> LLMConnection:
        """The user's active connection with its API key decrypted.

        Raises ``AuthConfigError`` when nothing is configured or the key is
        required but cannot be retrieved.
        """

        row = self.active_connection(user_id)
        if row is None:
            raise AuthConfigError(AuthConfigError.NO_LLM_CONFIGURED)
        api_key: Optional[str] = None
        if requires_api_key(row["provider"]):
            vault_id = row.get("api_key_vault_id")
            api_key = self.resolve_secret(vault_id) if vault_id else None
            if not api_key:
                self.logger.warning(
                    "API key could not be resolved",
                    extra={"provider": row["provider"]},
                )
                raise AuthConfigError(AuthConfigError.INVALID_API_KEY)
        return LLMConnection(
            provider=row["provider"],
            model=row["model"],
            api_key=api_key,
            base_url=row.get("base_url"),
        )


__all__ = ["Profile", "SUPER_ADMIN", "SettingsStore"]
