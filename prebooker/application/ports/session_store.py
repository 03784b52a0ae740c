from abc import ABC, abstractmethod

from prebooker.domain.entities.session import CredentialBundle, Session, SessionKind


class SessionStorePort(ABC):
    @abstractmethod
    async def get_session(self, user_ref: str, kind: SessionKind) -> Session | None:
        raise NotImplementedError

    async def get_unattended_session(self, user_ref: str) -> Session | None:
        return await self.get_session(user_ref, SessionKind.UNATTENDED)

    async def get_interactive_session(self, user_ref: str) -> Session | None:
        return await self.get_session(user_ref, SessionKind.INTERACTIVE)

    @abstractmethod
    async def save_session(self, session: Session) -> None:
        raise NotImplementedError

    @abstractmethod
    async def update_credentials(self, user_ref: str, bundle: CredentialBundle, kind: SessionKind) -> None:
        """Store a refreshed bundle under the same session identity."""
        raise NotImplementedError

    @abstractmethod
    async def mark_refresh_outcome(
        self,
        user_ref: str,
        success: bool,
        error: str | None,
        kind: SessionKind,
    ) -> None:
        """On success bumps refresh_count and last_refreshed_at; on failure records the error."""
        raise NotImplementedError

    @abstractmethod
    async def list_sessions(self) -> list[Session]:
        raise NotImplementedError

    @abstractmethod
    async def delete_session(self, user_ref: str, kind: SessionKind) -> None:
        raise NotImplementedError
