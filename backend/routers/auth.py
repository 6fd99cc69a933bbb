from fastapi import APIRouter, Depends

from backend.security import require_session

router = APIRouter()


# Login itself belongs to the identity provider; this only echoes the bearer claims.
@router.get("/auth/me")
def auth_me(session: dict = Depends(require_session)):
    return {
        "subject": session.get("sub"),
        "role": session.get("role"),
        "expires_at": session.get("exp"),
        "issued_at": session.get("iat"),
    }
