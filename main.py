from fastapi import FastAPI, HTTPException, Depends, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from fastapi import status
from pydantic import BaseModel, EmailStr, Field
from typing import List
from contextlib import asynccontextmanager
import logging
import uvicorn

from auth import (
    authenticate_user,
    create_access_token,
    create_refresh_token,
    decode_token,
    get_current_user,
    hash_password,
    oauth2_scheme,
)
from config import settings
from database import Database, get_db
from exceptions import EventServiceError
from manager import EventManager
from models import EventCreate, EventUpdate, Role, User
from utils import format_validation_errors, registrants_csv

# Logging
logging.basicConfig(
    level=getattr(logging, settings.log_level, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


# FastAPI App
@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.db = Database(settings.database_path)
    logger.info(f"Event store opened at {settings.database_path}")
    yield
    logger.info("Shutting down event store")


app = FastAPI(title="Event Management API", lifespan=lifespan)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# -------------------------------
# Error mapping
# -------------------------------
@app.exception_handler(EventServiceError)
async def handle_service_error(request: Request, exc: EventServiceError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.exception_handler(RequestValidationError)
async def handle_request_validation_error(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": format_validation_errors(exc.errors())})


@app.exception_handler(Exception)
async def handle_unexpected_error(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}", exc_info=exc)
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content={"detail": "Something went wrong!"})


def get_manager(db: Database = Depends(get_db)) -> EventManager:
    return EventManager(db)


# -------------------------------
# Schemas
# -------------------------------
class UserRegister(BaseModel):
    name: str = Field(min_length=1)
    email: EmailStr
    password: str = Field(min_length=6)
    role: Role = "user"


class UserLogin(BaseModel):
    email: str
    password: str


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


# -------------------------------
# User Routes
# -------------------------------
@app.post("/users/register", status_code=status.HTTP_201_CREATED, summary="Register a new user")
def register_user(user: UserRegister, db: Database = Depends(get_db)):
    """Register a new user with a specified role."""
    user_id = db.add_user(user.name, user.email, hash_password(user.password), user.role)
    if user_id is None:
        raise HTTPException(status_code=400, detail="User already exists")
    logger.info(f"User {user.email} registered with role {user.role}")
    return User.from_row(db.get_user(user_id)).to_dict()


@app.post("/users/login", response_model=TokenResponse, summary="Login and receive access/refresh tokens")
def login(user: UserLogin, db: Database = Depends(get_db)):
    """Authenticate user and return access and refresh tokens."""
    db_user = authenticate_user(db, user.email, user.password)
    if db_user is None:
        raise HTTPException(status_code=401, detail="Invalid credentials")
    logger.info(f"User {user.email} logged in")
    return TokenResponse(
        access_token=create_access_token(data={"sub": db_user.email}),
        refresh_token=create_refresh_token(data={"sub": db_user.email}),
    )


@app.post("/users/refresh", summary="Refresh access token")
def refresh(token: str = Depends(oauth2_scheme), db: Database = Depends(get_db)):
    """Exchange a refresh token for a new access token."""
    token_data = decode_token(token, "refresh")
    if db.get_user_by_email(token_data.email) is None:
        raise HTTPException(status_code=401, detail="User not found")
    logger.info(f"Token refreshed for {token_data.email}")
    return {"access_token": create_access_token(data={"sub": token_data.email}), "token_type": "bearer"}


@app.get("/users/me", summary="Current user with registered events")
def read_me(current_user: User = Depends(get_current_user), db: Database = Depends(get_db)):
    """Return the caller's profile with registered events resolved."""
    return current_user.to_dict(registered_events=db.list_registered_events(current_user.id))


# -------------------------------
# Event Routes
# -------------------------------
@app.get("/", summary="API root endpoint")
def root():
    """Welcome message for the Event Management API."""
    return {"message": "Welcome to Event Management API"}


@app.post("/events", status_code=status.HTTP_201_CREATED, summary="Create a new event")
def create_event(
    event: EventCreate,
    current_user: User = Depends(get_current_user),
    manager: EventManager = Depends(get_manager),
):
    """Create a new event organized by the caller."""
    return manager.create_event(event.model_dump(), current_user.id).to_dict()


@app.get("/events", response_model=List[dict], summary="List all events")
def list_events(manager: EventManager = Depends(get_manager)):
    """Retrieve all events sorted by date."""
    return manager.list_events()


@app.get("/events/{event_id}", summary="Get an event")
def get_event(event_id: str, manager: EventManager = Depends(get_manager)):
    """Retrieve one event with organizer and registrants resolved."""
    return manager.get_event(event_id)


@app.put("/events/{event_id}", summary="Update an event")
def update_event(
    event_id: str,
    event: EventUpdate,
    current_user: User = Depends(get_current_user),
    manager: EventManager = Depends(get_manager),
):
    """Update an existing event (organizer or admin only)."""
    fields = event.model_dump(exclude_unset=True)
    return manager.update_event(event_id, fields, current_user.id, current_user.role).to_dict()


@app.delete("/events/{event_id}", summary="Delete an event")
def delete_event(
    event_id: str,
    current_user: User = Depends(get_current_user),
    manager: EventManager = Depends(get_manager),
):
    """Delete an event (organizer or admin only)."""
    manager.delete_event(event_id, current_user.id, current_user.role)
    return {"message": "Event deleted successfully"}


@app.post("/events/{event_id}/register", summary="Register for an event")
def register_for_event(
    event_id: str,
    current_user: User = Depends(get_current_user),
    manager: EventManager = Depends(get_manager),
):
    """Register the caller for an event."""
    return manager.register(event_id, current_user.id).to_dict()


@app.post("/events/{event_id}/unregister", summary="Unregister from an event")
def unregister_from_event(
    event_id: str,
    current_user: User = Depends(get_current_user),
    manager: EventManager = Depends(get_manager),
):
    """Remove the caller from an event's registrants."""
    return manager.unregister(event_id, current_user.id).to_dict()


@app.get("/events/{event_id}/registrants/export", response_model=None, summary="Export registrants as CSV")
def export_registrants(
    event_id: str,
    current_user: User = Depends(get_current_user),
    manager: EventManager = Depends(get_manager),
):
    """Export the registrants of an event as a CSV file (organizer or admin only)."""
    registrants = manager.list_registrants(event_id, current_user.id, current_user.role)
    logger.info(f"Registrants exported for event {event_id} by {current_user.id}")
    return StreamingResponse(
        registrants_csv(registrants),
        media_type="text/csv",
        headers={"Content-Disposition": "attachment; filename=registrants.csv"},
    )


if __name__ == "__main__":
    uvicorn.run("main:app", reload=True)
