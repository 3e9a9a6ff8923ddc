import os
from dataclasses import dataclass
from typing import Optional

import jwt
from fastapi import Depends, Header, HTTPException, Response
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

import storage
from relay import anonymous_key, user_key

# ----------------------------
# JWT (emitido por el servicio de cuentas; aquí solo se verifica)
# ----------------------------
JWT_SECRET = os.getenv("MILLENNION_JWT_SECRET", "")
JWT_ALG = os.getenv("MILLENNION_JWT_ALG", "HS256")

ANONYMOUS_HEADER = "X-Anonymous-Id"
SET_ANONYMOUS_HEADER = "X-Set-Anonymous-ID"

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Identity:
    key: str
    plan: str
    is_authenticated: bool
    user_id: Optional[str] = None
    anonymous_id: Optional[str] = None
    user_name: Optional[str] = None
    is_new_anonymous: bool = False

    @property
    def display_name(self) -> str:
        return self.user_name or ("Anónimo" if not self.is_authenticated else self.user_id or "")


def decode_access_token(token: str) -> dict:
    try:
        return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALG])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token inválido o expirado")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Token inválido o expirado")


def _authenticated_identity(token: str) -> Identity:
    data = decode_access_token(token)
    user_id = str(data.get("sub") or data.get("id") or "").strip()
    if not user_id:
        raise HTTPException(status_code=401, detail="Token inválido (sin sub).")

    # Fuente de verdad del plan: DB (el claim solo siembra usuarios nuevos)
    u = storage.db_upsert_user(user_id, data.get("name"), data.get("plan"))
    return Identity(
        key=user_key(user_id),
        plan=u["plan"],
        is_authenticated=True,
        user_id=user_id,
        user_name=u.get("user_name"),
    )


def _anonymous_identity(anonymous_id: Optional[str]) -> Identity:
    anonymous_id = (anonymous_id or "").strip()
    is_new = not anonymous_id or not storage.db_anonymous_exists(anonymous_id)
    if is_new:
        # solo se persiste cuando la petición termina bien (ver register_anonymous)
        anonymous_id = storage.new_anonymous_id()
    return Identity(
        key=anonymous_key(anonymous_id),
        plan="anonymous",
        is_authenticated=False,
        anonymous_id=anonymous_id,
        is_new_anonymous=is_new,
    )


def register_anonymous(identity: Identity, response: Response) -> None:
    if not identity.is_new_anonymous:
        return
    storage.db_create_anonymous(identity.anonymous_id)
    # el frontend guarda este id y lo reenvía en X-Anonymous-Id
    response.headers[SET_ANONYMOUS_HEADER] = identity.anonymous_id


def resolve_identity(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    x_anonymous_id: Optional[str] = Header(None, alias=ANONYMOUS_HEADER),
) -> Identity:
    if credentials is not None and credentials.credentials:
        return _authenticated_identity(credentials.credentials)
    return _anonymous_identity(x_anonymous_id)


def require_authenticated(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Identity:
    if credentials is None or not credentials.credentials:
        raise HTTPException(status_code=403, detail="Debes iniciar sesión para continuar.")
    return _authenticated_identity(credentials.credentials)
