from core.database import SessionLocal
from typing import Annotated
from fastapi import Depends, HTTPException, Request
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session
from jose import JWTError
from starlette import status
from services.authorization import Actor
from services.order_service import OrderService
from services.token_service import TokenService


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

db_dependency = Annotated[Session, Depends(get_db)]


# Tokens are issued by the login service; tokenUrl is only used by the docs UI
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="auth/token")


def get_current_actor(token: Annotated[str, Depends(oauth2_scheme)]) -> Actor:
    try:
        claims = TokenService.decode_access_token(token)
    except JWTError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED,
                            detail="Could not validate credentials.",
                            headers={"WWW-Authenticate": "Bearer"})

    return Actor(user_id=claims["user_id"], role=claims["role"])

actor_dependency = Annotated[Actor, Depends(get_current_actor)]


def get_order_service(request: Request, db: db_dependency) -> OrderService:
    """Engine bound to this request's session and the app-wide fan-out."""
    return OrderService(db, request.app.state.dispatcher, request.app.state.locations)

order_service_dependency = Annotated[OrderService, Depends(get_order_service)]
