from fastapi import Request, HTTPException
from issue_tracker.core.security import verify_session
from issue_tracker.auth.user import Role, User

SESSION_COOKIE = "sid"


def user_from_token(token: str | None) -> User | None:
    if not token:
        return None
    payload = verify_session(token)
    if not payload or "role" not in payload:
        return None
    try:
        return User(Role(payload["role"]))
    except ValueError:
        return None


def get_current_user(request: Request) -> User:
    token = request.cookies.get(SESSION_COOKIE)
    if not token:
        raise HTTPException(status_code=401, detail="Not authenticated")
    user = user_from_token(token)
    if user is None:
        raise HTTPException(status_code=401, detail="Invalid session")
    return user
