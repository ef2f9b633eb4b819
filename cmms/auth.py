import os
import secrets
import hashlib
import hmac
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Callable

from fastapi import HTTPException, Header, Depends, Cookie

from .db import connect

logger = logging.getLogger(__name__)

SESSION_DURATION_SECONDS = int(os.getenv("SESSION_DURATION_SECONDS", "28800"))
PBKDF2_ITERATIONS = 100_000

ROLE_LABELS = {"admin", "technician", "viewer"}

# Roles que pueden registrar trabajo en planta
WRITE_ROLES = ("admin", "technician")


def hash_password(password: str, salt: str) -> str:
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt.encode("utf-8"), PBKDF2_ITERATIONS)
    return digest.hex()


def verify_password(password: str, salt: str, password_hash: str) -> bool:
    return hmac.compare_digest(hash_password(password, salt), password_hash)


def create_user(cur, username: str, password: str, role: str) -> int:
    username = username.strip().lower()
    if role not in ROLE_LABELS:
        raise ValueError("Rol inválido")
    if not username or not password:
        raise ValueError("Usuario y contraseña requeridos")
    salt = secrets.token_hex(16)
    pwd_hash = hash_password(password, salt)
    cur.execute(
        "INSERT INTO users(username, password_hash, password_salt, role) VALUES (?,?,?,?)",
        (username, pwd_hash, salt, role),
    )
    return cur.lastrowid


def ensure_default_users(cur) -> None:
    count = cur.execute("SELECT COUNT(*) AS n FROM users").fetchone()["n"]
    if count:
        return
    defaults = [
        ("admin", os.getenv("ADMIN_DEFAULT_PASSWORD", "admin123"), "admin"),
        ("technician", os.getenv("TECHNICIAN_DEFAULT_PASSWORD", "technician123"), "technician"),
        ("viewer", os.getenv("VIEWER_DEFAULT_PASSWORD", "viewer123"), "viewer"),
    ]
    for username, password, role in defaults:
        create_user(cur, username, password, role)
    logger.info("Usuarios por defecto creados: %s", ", ".join(d[0] for d in defaults))


def create_session(cur, user_id: int) -> Dict[str, str]:
    token = secrets.token_hex(32)
    expires_at = (datetime.utcnow() + timedelta(seconds=SESSION_DURATION_SECONDS)).isoformat()
    cur.execute(
        "INSERT INTO user_session(token, user_id, expires_at) VALUES (?,?,?)",
        (token, user_id, expires_at),
    )
    return {"token": token, "expires_at": expires_at}


def delete_session(cur, token: str) -> None:
    cur.execute("DELETE FROM user_session WHERE token=?", (token,))


def authenticate(cur, username: str, password: str) -> Optional[Dict[str, Any]]:
    """Return the user row when the credentials match, else None."""
    row = cur.execute(
        "SELECT id, username, password_hash, password_salt, role FROM users WHERE username=?",
        (username.strip().lower(),),
    ).fetchone()
    if row is None or not verify_password(password, row["password_salt"], row["password_hash"]):
        logger.warning("Login fallido para %s", username)
        return None
    return {"id": row["id"], "username": row["username"], "role": row["role"]}


def cookie_settings() -> Dict[str, Any]:
    samesite = os.getenv("COOKIE_SAMESITE", "lax").strip().lower()
    if samesite not in ("lax", "strict", "none"):
        samesite = "lax"
    settings: Dict[str, Any] = {"httponly": True, "samesite": samesite, "path": "/"}
    domain = os.getenv("COOKIE_DOMAIN", "").strip()
    if domain:
        settings["domain"] = domain
    # SameSite=None solo es aceptado por los navegadores con Secure
    if samesite == "none" or os.getenv("COOKIE_SECURE", "false").lower() in ("1", "true", "yes"):
        settings["secure"] = True
    return settings


def _extract_token(authorization: Optional[str], cookie_token: Optional[str] = None) -> str:
    if authorization:
        scheme, _, token = authorization.partition(" ")
        if scheme.lower() != "bearer":
            raise HTTPException(status_code=401, detail="Formato de token inválido")
        token = token.strip()
    else:
        token = cookie_token
    if not token:
        raise HTTPException(status_code=401, detail="Token requerido")
    return token


def _session_expired(expires_at: str) -> bool:
    try:
        return datetime.fromisoformat(expires_at) < datetime.utcnow()
    except ValueError:
        return True


def get_current_user(
    authorization: Optional[str] = Header(None),
    session: Optional[str] = Cookie(default=None),
) -> Dict[str, Any]:
    token = _extract_token(authorization, session)
    with connect() as con:
        cur = con.cursor()
        row = cur.execute(
            """
            SELECT u.id, u.username, u.role, s.token AS session_token, s.expires_at AS session_expires_at
            FROM user_session s JOIN users u ON u.id = s.user_id
            WHERE s.token=?
            """,
            (token,),
        ).fetchone()
        if row is None:
            raise HTTPException(status_code=401, detail="Sesión no válida")
        if _session_expired(row["session_expires_at"]):
            delete_session(cur, token)
            con.commit()
            raise HTTPException(status_code=401, detail="Sesión expirada")
        return dict(row)


def require_user(user=Depends(get_current_user)) -> Dict[str, Any]:
    return user


def require_role(*roles: str) -> Callable:
    """Dependency factory: 403 unless the current user has one of ``roles``."""
    allowed = set(roles)

    def dependency(user=Depends(get_current_user)) -> Dict[str, Any]:
        if user["role"] not in allowed:
            logger.warning("Acceso denegado a %s (rol %s)", user["username"], user["role"])
            raise HTTPException(status_code=403, detail="No tienes permisos para esta operación")
        return user

    return dependency
