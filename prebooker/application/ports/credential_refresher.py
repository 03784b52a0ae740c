from abc import ABC, abstractmethod

from prebooker.domain.entities.session import CredentialBundle, RefreshResult


class CredentialRefresherPort(ABC):
    @abstractmethod
    async def refresh(self, current: CredentialBundle) -> RefreshResult:
        """
        Rotate the upstream token. Never raises for upstream answers:
        logged-out and transient failures are reported in the result.
        """
        raise NotImplementedError
