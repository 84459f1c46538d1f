import hmac

from fastapi import Depends, Header, HTTPException

from slot_hub.context import AppContext, get_context


def require_bearer_token(
    authorization: str | None = Header(None, alias="Authorization"),
    ctx: AppContext = Depends(get_context),
):
    """
    FastAPI dependency guarding admin routes with Authorization: Bearer <token>
    whenever a token is configured.
    """
    expected = ctx.settings.bearer_token
    if not expected:
        return
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Unauthorized")
    token = authorization.split(" ", 1)[1].strip()
    if not hmac.compare_digest(token, expected):
        raise HTTPException(status_code=401, detail="Unauthorized")
