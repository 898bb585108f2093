import logging
import re
from typing import Any, Dict, List, Literal, Optional

import uvicorn
from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import settings
from database import get_db
from logging_config import configure_logging
from schemas import (
    AddRatingRequest,
    AdminCreateStoreRequest,
    CreateStoreRequest,
    CreateUserRequest,
    LoginRequest,
    LoginResponse,
    MyRatingOut,
    OwnerRater,
    OwnerStoreOut,
    PublicUser,
    Rating as RatingSchema,
    RatingOut,
    Role,
    SessionUser,
    SignupRequest,
    StatsResponse,
    Store as StoreSchema,
    StoreListItem,
    StoreOut,
    UpdatePasswordRequest,
    UpdateRatingRequest,
    User as UserSchema,
    UsersResponse,
    format_validation_errors,
    utcnow,
)
from security import (
    create_access_token,
    get_current_user,
    get_optional_user,
    hash_password,
    require_role,
    sanitize,
    to_obj_id,
    verify_password,
)

configure_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

# App and CORS
app = FastAPI(title="Ratings Platform API")
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Errors are reported as {"error": message}
@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=422, content={"error": format_validation_errors(exc.errors())})


# Helpers

SortOrder = Literal["asc", "desc"]


def contains(text: str) -> Dict[str, Any]:
    return {"$regex": re.escape(text), "$options": "i"}


def sort_direction(order: str) -> int:
    return 1 if order == "asc" else -1


def create_user(db: Database, payload: SignupRequest) -> Dict[str, Any]:
    if db["user"].find_one({"email": payload.email}):
        raise HTTPException(status_code=409, detail="Email already registered")
    user_doc = UserSchema(
        name=payload.name,
        email=payload.email,
        address=payload.address,
        password_hash=hash_password(payload.password),
        role=payload.role,
    ).model_dump()
    try:
        res = db["user"].insert_one(user_doc)
    except DuplicateKeyError:
        raise HTTPException(status_code=409, detail="Email already registered")
    user_doc["_id"] = res.inserted_id
    logger.info("Registered %s as %s", payload.email, payload.role.value)
    return sanitize(user_doc)


def rating_summaries(db: Database, store_ids: List[str]) -> Dict[str, Dict[str, Any]]:
    pipe = [
        {"$match": {"store_id": {"$in": store_ids}}},
        {"$group": {"_id": "$store_id", "avg": {"$avg": "$rating"}, "count": {"$sum": 1}}},
    ]
    return {
        row["_id"]: {"average_rating": round(row["avg"], 2), "rating_count": row["count"]}
        for row in db["rating"].aggregate(pipe)
    }


def with_summary(store: Dict[str, Any], summaries: Dict[str, Dict[str, Any]]) -> Dict[str, Any]:
    return {**store, **summaries.get(store["id"], {"average_rating": None, "rating_count": 0})}


def create_store(db: Database, owner_id: str, payload: CreateStoreRequest) -> StoreOut:
    if db["store"].find_one({"owner_id": owner_id}):
        raise HTTPException(status_code=409, detail="Owner already has a store")
    store_doc = StoreSchema(
        owner_id=owner_id, name=payload.name, email=payload.email, address=payload.address
    ).model_dump()
    try:
        res = db["store"].insert_one(store_doc)
    except DuplicateKeyError:
        raise HTTPException(status_code=409, detail="Owner already has a store")
    store_doc["_id"] = res.inserted_id
    logger.info("Created store %s for owner %s", res.inserted_id, owner_id)
    return StoreOut.model_validate(sanitize(store_doc))


def find_own_rating(db: Database, rating_id: str, user_id: str) -> Dict[str, Any]:
    rating = db["rating"].find_one({"_id": to_obj_id(rating_id), "user_id": user_id})
    if not rating:
        raise HTTPException(status_code=404, detail="Rating not found")
    return rating


# Auth Routes
@app.post("/auth/register")
def register(
    payload: SignupRequest,
    caller: Optional[Dict[str, Any]] = Depends(get_optional_user),
    db: Database = Depends(get_db),
):
    """Create an account. Does not log the new user in."""
    if payload.role == Role.ADMIN and (caller is None or caller.get("role") != Role.ADMIN.value):
        logger.warning("Rejected self-registration of admin account %s", payload.email)
        raise HTTPException(status_code=403, detail="Only administrators can create admin accounts")
    create_user(db, payload)
    return {}


@app.post("/auth/login", response_model=LoginResponse)
def login(payload: LoginRequest, db: Database = Depends(get_db)):
    user = db["user"].find_one({"email": payload.email})
    if not user or not verify_password(payload.password, user.get("password_hash", "")):
        logger.info("Failed login for %s", payload.email)
        raise HTTPException(status_code=401, detail="Invalid email or password")
    token = create_access_token({"sub": str(user["_id"])})
    logger.info("Login for %s", payload.email)
    return LoginResponse(user=SessionUser.model_validate(sanitize(user)), token=token)


@app.get("/me", response_model=PublicUser)
def me(current_user=Depends(get_current_user)):
    return PublicUser.model_validate(current_user)


@app.put("/auth/password")
def update_password(
    payload: UpdatePasswordRequest,
    current_user=Depends(get_current_user),
    db: Database = Depends(get_db),
):
    user = db["user"].find_one({"_id": to_obj_id(current_user["id"])})
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    if not verify_password(payload.current_password, user.get("password_hash", "")):
        raise HTTPException(status_code=400, detail="Current password is incorrect")
    db["user"].update_one(
        {"_id": user["_id"]},
        {"$set": {"password_hash": hash_password(payload.new_password), "updated_at": utcnow()}},
    )
    return {"message": "Password updated"}


# Admin Routes
@app.post("/admin/users", response_model=PublicUser)
def admin_create_user(
    payload: CreateUserRequest,
    admin=Depends(require_role(Role.ADMIN)),
    db: Database = Depends(get_db),
):
    return PublicUser.model_validate(create_user(db, payload))


@app.get("/admin/users", response_model=UsersResponse)
def admin_list_users(
    name: Optional[str] = None,
    email: Optional[str] = None,
    address: Optional[str] = None,
    role: Optional[Role] = None,
    sort_by: Literal["name", "email", "address", "role", "created_at"] = Query("name"),
    order: SortOrder = Query("asc"),
    admin=Depends(require_role(Role.ADMIN)),
    db: Database = Depends(get_db),
):
    q: Dict[str, Any] = {}
    if name:
        q["name"] = contains(name)
    if email:
        q["email"] = contains(email)
    if address:
        q["address"] = contains(address)
    if role:
        q["role"] = role.value
    cursor = db["user"].find(q).sort([(sort_by, sort_direction(order))])
    return UsersResponse(users=[PublicUser.model_validate(sanitize(u)) for u in cursor])


@app.get("/admin/stats", response_model=StatsResponse)
def admin_stats(admin=Depends(require_role(Role.ADMIN)), db: Database = Depends(get_db)):
    return StatsResponse(
        total_users=db["user"].count_documents({}),
        total_stores=db["store"].count_documents({}),
        total_ratings=db["rating"].count_documents({}),
    )


@app.post("/admin/stores", response_model=StoreOut)
def admin_create_store(
    payload: AdminCreateStoreRequest,
    admin=Depends(require_role(Role.ADMIN)),
    db: Database = Depends(get_db),
):
    owner = db["user"].find_one({"_id": to_obj_id(payload.owner_id)})
    if not owner or owner.get("role") != Role.OWNER.value:
        raise HTTPException(status_code=400, detail="ownerId must be a valid Store Owner")
    return create_store(db, payload.owner_id, payload)


@app.get("/admin/stores", response_model=List[StoreOut])
def admin_list_stores(
    name: Optional[str] = None,
    email: Optional[str] = None,
    address: Optional[str] = None,
    sort_by: Literal["name", "email", "address", "created_at"] = Query("name"),
    order: SortOrder = Query("asc"),
    admin=Depends(require_role(Role.ADMIN)),
    db: Database = Depends(get_db),
):
    q: Dict[str, Any] = {}
    if name:
        q["name"] = contains(name)
    if email:
        q["email"] = contains(email)
    if address:
        q["address"] = contains(address)
    stores = [sanitize(s) for s in db["store"].find(q).sort([(sort_by, sort_direction(order))])]
    summaries = rating_summaries(db, [s["id"] for s in stores])
    return [StoreOut.model_validate(with_summary(s, summaries)) for s in stores]


# Owner routes
@app.post("/owner/store", response_model=StoreOut)
def owner_create_store(
    payload: CreateStoreRequest,
    current_owner=Depends(require_role(Role.OWNER)),
    db: Database = Depends(get_db),
):
    return create_store(db, current_owner["id"], payload)


@app.get("/owner/store", response_model=Optional[OwnerStoreOut])
def owner_get_store(current_owner=Depends(require_role(Role.OWNER)), db: Database = Depends(get_db)):
    store = db["store"].find_one({"owner_id": current_owner["id"]})
    if not store:
        return None
    s = sanitize(store)
    ratings = [RatingOut.model_validate(sanitize(r)) for r in db["rating"].find({"store_id": s["id"]})]
    return OwnerStoreOut.model_validate({**with_summary(s, rating_summaries(db, [s["id"]])), "ratings": ratings})


@app.get("/owner/ratings", response_model=List[OwnerRater])
def owner_ratings(current_owner=Depends(require_role(Role.OWNER)), db: Database = Depends(get_db)):
    store = db["store"].find_one({"owner_id": current_owner["id"]})
    if not store:
        return []
    ratings = list(db["rating"].find({"store_id": str(store["_id"])}).sort([("created_at", -1)]))
    user_ids = [to_obj_id(r["user_id"]) for r in ratings]
    user_map = {str(u["_id"]): u for u in db["user"].find({"_id": {"$in": user_ids}})} if ratings else {}
    raters = []
    for r in ratings:
        rater = user_map.get(r["user_id"], {})
        raters.append(
            OwnerRater(
                user_name=rater.get("name", ""),
                user_email=rater.get("email", ""),
                rating=r["rating"],
                comment=r.get("comment"),
                created_at=r.get("created_at"),
            )
        )
    return raters


# Stores and Ratings for Users
@app.get("/stores", response_model=List[StoreListItem])
def list_stores(
    name: Optional[str] = None,
    address: Optional[str] = None,
    sort_by: Literal["name", "address", "created_at"] = Query("name"),
    order: SortOrder = Query("asc"),
    current_user=Depends(get_current_user),
    db: Database = Depends(get_db),
):
    q: Dict[str, Any] = {}
    if name:
        q["name"] = contains(name)
    if address:
        q["address"] = contains(address)
    stores = [sanitize(s) for s in db["store"].find(q).sort([(sort_by, sort_direction(order))])]
    store_ids = [s["id"] for s in stores]
    summaries = rating_summaries(db, store_ids)
    mine = {
        r["store_id"]: r["rating"]
        for r in db["rating"].find({"user_id": current_user["id"], "store_id": {"$in": store_ids}})
    }
    return [
        StoreListItem.model_validate({**with_summary(s, summaries), "my_rating": mine.get(s["id"])})
        for s in stores
    ]


@app.post("/ratings", response_model=RatingOut)
def add_rating(
    payload: AddRatingRequest,
    current_user=Depends(require_role(Role.USER)),
    db: Database = Depends(get_db),
):
    if not db["store"].find_one({"_id": to_obj_id(payload.store_id)}):
        raise HTTPException(status_code=404, detail="Store not found")
    if db["rating"].find_one({"store_id": payload.store_id, "user_id": current_user["id"]}):
        raise HTTPException(status_code=409, detail="You have already rated this store")
    doc = RatingSchema(
        user_id=current_user["id"],
        store_id=payload.store_id,
        rating=payload.rating,
        comment=payload.comment,
    ).model_dump()
    try:
        res = db["rating"].insert_one(doc)
    except DuplicateKeyError:
        raise HTTPException(status_code=409, detail="You have already rated this store")
    doc["_id"] = res.inserted_id
    return RatingOut.model_validate(sanitize(doc))


@app.get("/ratings/mine", response_model=List[MyRatingOut])
def my_ratings(current_user=Depends(require_role(Role.USER)), db: Database = Depends(get_db)):
    ratings = [sanitize(r) for r in db["rating"].find({"user_id": current_user["id"]}).sort([("created_at", -1)])]
    store_ids = [to_obj_id(r["store_id"]) for r in ratings]
    names = {str(s["_id"]): s["name"] for s in db["store"].find({"_id": {"$in": store_ids}})} if ratings else {}
    return [MyRatingOut.model_validate({**r, "store_name": names.get(r["store_id"])}) for r in ratings]


@app.put("/ratings/{rating_id}", response_model=RatingOut)
def update_rating(
    rating_id: str,
    payload: UpdateRatingRequest,
    current_user=Depends(require_role(Role.USER)),
    db: Database = Depends(get_db),
):
    rating = find_own_rating(db, rating_id, current_user["id"])
    changes = {"rating": payload.rating, "comment": payload.comment, "updated_at": utcnow()}
    db["rating"].update_one({"_id": rating["_id"]}, {"$set": changes})
    return RatingOut.model_validate(sanitize({**rating, **changes}))


@app.delete("/ratings/{rating_id}")
def delete_rating(
    rating_id: str,
    current_user=Depends(require_role(Role.USER)),
    db: Database = Depends(get_db),
):
    rating = find_own_rating(db, rating_id, current_user["id"])
    db["rating"].delete_one({"_id": rating["_id"]})
    return {"message": "Rating deleted"}


# Bootstrap route for demo
@app.post("/init/bootstrap")
def bootstrap_admin(db: Database = Depends(get_db)):
    """Create a default admin if none exists (email: admin@example.com, password: Admin@123)."""
    if db["user"].count_documents({"role": Role.ADMIN.value}) > 0:
        raise HTTPException(status_code=400, detail="Admin already exists")
    user_doc = UserSchema(
        name="Default Administrator User Name",
        email="admin@example.com",
        address="Admin Address",
        password_hash=hash_password("Admin@123"),
        role=Role.ADMIN,
    ).model_dump()
    db["user"].insert_one(user_doc)
    logger.info("Bootstrapped default admin account")
    return {"message": "Admin created", "email": "admin@example.com", "password": "Admin@123"}


# Utility endpoints
@app.get("/")
def root():
    return {"message": "Ratings Platform API running"}


@app.get("/test")
def test_database(db: Database = Depends(get_db)):
    try:
        return {"backend": "ok", "database": "ok", "collections": db.list_collection_names()}
    except PyMongoError as e:
        logger.error("Database check failed: %s", e)
        return {"backend": "ok", "database": f"error: {e}"}


def main() -> None:
    """Run the API server."""
    logger.info("Starting Ratings Platform API on %s:%s", settings.HOST, settings.PORT)
    uvicorn.run(app, host=settings.HOST, port=settings.PORT, log_config=None)


if __name__ == "__main__":
    main()
