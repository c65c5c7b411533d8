"""
Hello API: the protected resource the web app calls with the user's access token.
GET /hello requires realm role USER and greets the caller by nickname.
"""
from fastapi import FastAPI
from fastapi.responses import PlainTextResponse

from hello_api.auth import require_role
from hello_api.config import REQUIRED_ROLE

app = FastAPI(title="Hello API", version="0.2.0")

RequireUser = require_role(REQUIRED_ROLE)


def greeting_name(claims: dict) -> str:
    for claim in ("nickname", "sub"):
        value = claims.get(claim)
        if isinstance(value, str) and value:
            return value
    return "World"


@app.get("/health")
def health():
    """Health check endpoint."""
    return {"status": "ok", "service": "hello_api"}


@app.get("/hello", response_class=PlainTextResponse)
def hello(claims: dict = RequireUser):
    return PlainTextResponse(f"Hello, {greeting_name(claims)}!", headers={"Cache-Control": "no-cache"})


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "hello_api.main:app",
        host="127.0.0.1",
        port=7000,
        reload=True,
    )
