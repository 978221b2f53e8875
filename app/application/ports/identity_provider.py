from typing import Optional, Protocol


class IdentityProvider(Protocol):
    def verify(self, token: str) -> Optional[str]:
        """Return the stable user id for ``token``, or None when it is not valid."""
        ...
