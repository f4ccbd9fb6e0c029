from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import jwt, JWTError, ExpiredSignatureError
from jose.exceptions import JWTClaimsError

from core.services.token_service import TokenService, TokenClaims
from core.use_cases.errors import AuthenticationError

TOKEN_TYPES = ("access", "refresh")


class JoseTokenService(TokenService):
    def __init__(self, secret_key: str, algorithm: str = "HS256", issuer: str = "coworking",
                 audience: str = "coworking-api", access_ttl: timedelta = timedelta(minutes=15),
                 refresh_ttl: timedelta = timedelta(days=7)):
        self.secret_key = secret_key
        self.algorithm = algorithm
        self.issuer = issuer
        self.audience = audience
        self.ttl = {"access": access_ttl, "refresh": refresh_ttl}

    def issue(self, claims: TokenClaims, token_type: str = "access",
              expires_delta: Optional[timedelta] = None) -> str:
        if token_type not in TOKEN_TYPES:
            raise ValueError(f"Unknown token type {token_type}")
        now = datetime.now(timezone.utc)
        expire = now + (expires_delta if expires_delta is not None else self.ttl[token_type])
        to_encode = {
            "sub": str(claims.user_id),
            "userId": claims.user_id,
            "email": claims.email,
            "role": claims.role,
            "nftHolder": claims.nft_holder,
            "walletAddress": claims.wallet_address,
            "type": token_type,
            "iss": self.issuer,
            "aud": self.audience,
            "iat": now,
            "exp": expire,
        }
        return jwt.encode(to_encode, self.secret_key, algorithm=self.algorithm)

    def verify(self, token: str) -> TokenClaims:
        try:
            payload = jwt.decode(
                token,
                self.secret_key,
                algorithms=[self.algorithm],
                audience=self.audience,
                issuer=self.issuer,
            )
        except ExpiredSignatureError:
            raise AuthenticationError("Token has expired", code="TOKEN_EXPIRED")
        except JWTClaimsError:
            raise AuthenticationError("Token audience or issuer mismatch", code="TOKEN_CLAIMS_INVALID")
        except JWTError:
            raise AuthenticationError("Could not validate credentials", code="TOKEN_INVALID")

        try:
            return TokenClaims(
                user_id=int(payload["userId"]),
                email=payload["email"],
                role=payload["role"],
                nft_holder=bool(payload.get("nftHolder", False)),
                wallet_address=payload.get("walletAddress"),
                token_type=payload.get("type", "access"),
            )
        except (KeyError, TypeError, ValueError):
            raise AuthenticationError("Token is missing required claims", code="TOKEN_CLAIMS_INVALID")
