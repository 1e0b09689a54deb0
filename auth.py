import logging
import os
from typing import Optional

import jwt
from dotenv import load_dotenv
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pymongo.database import Database

from mongo import USERS, get_db
from queries import as_object_id

load_dotenv()

DEV_JWT_SECRET = "insecure-development-secret-do-not-deploy"


def load_jwt_secret() -> str:
    secret = os.getenv("JWT_SECRET")
    if not secret:
        logging.warning("JWT_SECRET is not set, falling back to an insecure development secret")
        return DEV_JWT_SECRET
    return secret


JWT_SECRET = load_jwt_secret()
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")

MEDICAL_PERSONNEL = "medical_personnel"
MOTHER = "mother"

bearer_scheme = HTTPBearer(auto_error=False)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")


def load_user(db: Database, token: Optional[str]) -> dict:
    """Resolve a bearer token to the stored user, without credential fields."""
    if not token:
        raise HTTPException(status_code=401, detail="Not authenticated")

    claims = decode_token(token)
    user_id = as_object_id(claims.get("id") or claims.get("sub"))
    user = db[USERS].find_one({"_id": user_id}, {"password": 0}) if user_id else None
    if not user:
        logging.warning("Token refers to an unknown user")
        raise HTTPException(status_code=401, detail="Not authenticated")
    return user


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: Database = Depends(get_db),
) -> dict:
    return load_user(db, credentials.credentials if credentials else None)


def require_medical_personnel(user: dict = Depends(get_current_user)) -> dict:
    if user.get("role") != MEDICAL_PERSONNEL:
        raise HTTPException(status_code=403, detail="Access restricted to medical personnel")
    return user
