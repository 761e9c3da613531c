from typing import Optional

from fastapi import Header, HTTPException, status

from app.services.graph_client import GraphClient, GraphClientError, build_graph_client


async def get_graph_client(
    authorization: Optional[str] = Header(
        default=None,
        description=(
            "Delegated Microsoft Graph access token of the signed-in user, "
            "as `Bearer <token>`."
        ),
    ),
) -> GraphClient:
    """
    Dependency building a per-request GraphClient from the caller's token.

    Rules
    -----
    - Header missing or not of the form `Bearer <token>` -> 401.
    - Token not shaped like a JWT                         -> 401.
    """
    if not authorization:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="No authorization header provided.",
            headers={"WWW-Authenticate": "Bearer"},
        )

    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="No bearer token provided.",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        return build_graph_client(token.strip())
    except GraphClientError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc
