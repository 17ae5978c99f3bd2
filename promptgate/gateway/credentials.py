"""Workspace credential lookup.

The gateway never persists credentials itself: it asks a ``CredentialStore``
for the opaque stored value of a workspace's provider key and decrypts it
through the vault only for the duration of one provider call.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from promptgate.gateway.types import ProviderName


@dataclass(frozen=True)
class WorkspaceCredential:
    workspace_id: str
    provider: ProviderName
    stored_api_key: str  # encrypted blob, or a legacy plaintext key
    agents_content: str = ""

    def __repr__(self) -> str:
        return f"WorkspaceCredential(workspace_id={self.workspace_id!r}, provider={self.provider.value!r})"


class CredentialStore(Protocol):
    async def get_credential(self, workspace_id: str) -> WorkspaceCredential | None: ...


class InMemoryCredentialStore:
    """Dict-backed store for development and tests."""

    def __init__(self, credentials: list[WorkspaceCredential] | None = None):
        self._credentials: dict[str, WorkspaceCredential] = {c.workspace_id: c for c in credentials or []}

    async def get_credential(self, workspace_id: str) -> WorkspaceCredential | None:
        return self._credentials.get(workspace_id)

    def put(self, credential: WorkspaceCredential) -> None:
        self._credentials[credential.workspace_id] = credential

    def remove(self, workspace_id: str) -> bool:
        return self._credentials.pop(workspace_id, None) is not None
