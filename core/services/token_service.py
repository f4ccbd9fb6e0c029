from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional


@dataclass
class TokenClaims:
    user_id: int
    email: str
    role: str
    nft_holder: bool = False
    wallet_address: Optional[str] = None
    token_type: str = "access"  # access | refresh


@dataclass
class TokenPair:
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class TokenService(ABC):
    @abstractmethod
    def issue(self, claims: TokenClaims, token_type: str = "access") -> str:...

    @abstractmethod
    def verify(self, token: str) -> TokenClaims:
        """Raises AuthenticationError with a TOKEN_* code on any failure."""
