import logging

from fastapi import APIRouter, Depends, HTTPException, Response
from pymongo.errors import DuplicateKeyError

from auth import create_token, get_current_user, hash_password, public_user, verify_password
from config import JWT_EXPIRE_DAYS
from database import create_document, get_db, now, to_object_id
from helpers import respond
from schemas import LoginBody, RegisterBody

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


def _issue(response: Response, user: dict) -> str:
    token = create_token({"id": str(user["_id"]), "role": user.get("role", "user")})
    response.set_cookie(
        "token", token, httponly=True, samesite="lax", max_age=JWT_EXPIRE_DAYS * 24 * 3600,
    )
    return token


@router.post("/register", status_code=201)
def register(body: RegisterBody, response: Response, db=Depends(get_db)):
    email = body.email.lower()
    if db["user"].find_one({"email": email}):
        raise HTTPException(status_code=400, detail="User already exists")
    try:
        user_id = create_document(db, "user", {
            "name": body.name.strip(),
            "phone": body.phone.strip(),
            "email": email,
            "password_hash": hash_password(body.password),
            "role": "user",
            "avatar": None,
            "addresses": [],
            "wishlist": [],
            "is_blocked": False,
            "wallet_balance": 0,
            "subscription": None,
            "current_plan": None,
            "last_login": None,
        })
    except DuplicateKeyError:
        raise HTTPException(status_code=400, detail="User already exists")
    oid = to_object_id(user_id)
    db["user"].update_one({"_id": oid}, {"$set": {"referral_code": f"REF{user_id[-8:].upper()}"}})
    user = db["user"].find_one({"_id": oid})
    token = _issue(response, user)
    return respond({"token": token, "user": public_user(user)}, "User registered successfully")


@router.post("/login")
def login(body: LoginBody, response: Response, db=Depends(get_db)):
    user = db["user"].find_one({"email": body.email.lower()})
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    if not verify_password(body.password, user.get("password_hash", "")):
        logger.info("Failed login for %s", body.email)
        raise HTTPException(status_code=401, detail="Wrong password")
    if user.get("is_blocked"):
        raise HTTPException(status_code=403, detail="Account is blocked")
    db["user"].update_one({"_id": user["_id"]}, {"$set": {"last_login": now()}})
    token = _issue(response, user)
    return respond({
        "token": token,
        "user": {
            "id": str(user["_id"]),
            "name": user["name"],
            "email": user["email"],
            "role": user.get("role", "user"),
        },
    }, "Login successful")


@router.post("/logout")
def logout(response: Response, user=Depends(get_current_user)):
    response.delete_cookie("token")
    return respond(None, "Logged out")


@router.get("/me")
def me(user=Depends(get_current_user)):
    return respond(public_user(user))
