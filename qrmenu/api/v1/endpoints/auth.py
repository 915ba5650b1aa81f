from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordRequestForm
from qrmenu.core.config import Settings
from qrmenu.core.deps import get_settings
from qrmenu.core.security import authenticate_admin, create_access_token, decode_token, get_current_admin
from qrmenu.schemas.auth import AdminOut, TokenResponse
from jose import JWTError
from starlette.concurrency import run_in_threadpool

router = APIRouter(prefix="/auth", tags=["Authentication"])

@router.post("/login", response_model=TokenResponse)
async def login(
    form_data: OAuth2PasswordRequestForm = Depends(),
    settings: Settings = Depends(get_settings),
):
    # bcrypt is slow enough to keep off the event loop
    valid = await run_in_threadpool(authenticate_admin, form_data.username, form_data.password, settings)
    if not valid:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect username or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    access_token = create_access_token({"sub": form_data.username}, settings)
    refresh_token = create_access_token({"sub": form_data.username, "type": "refresh"}, settings)

    return TokenResponse(
        access_token=access_token,
        refresh_token=refresh_token
    )

@router.post("/refresh", response_model=TokenResponse)
async def refresh_token(refresh_token: str, settings: Settings = Depends(get_settings)):
    try:
        payload = decode_token(refresh_token, settings)
    except JWTError:
        raise HTTPException(status_code=400, detail="Invalid refresh token")
    if payload.get("type") != "refresh" or payload.get("sub") != settings.ADMIN_USERNAME:
        raise HTTPException(status_code=400, detail="Invalid refresh token")

    access_token = create_access_token({"sub": payload["sub"]}, settings)
    return TokenResponse(access_token=access_token, refresh_token=refresh_token)

@router.get("/me", response_model=AdminOut)
async def me(admin: str = Depends(get_current_admin)):
    return AdminOut(username=admin)
