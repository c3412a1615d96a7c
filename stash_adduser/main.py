from __future__ import annotations

import uvicorn
from fastapi import FastAPI

from stash_adduser.api import users
from stash_adduser.api.utils import register_exception_handlers

app = FastAPI(
    title="Stash admin",
    description="Admin interface for provisioning users into a running stash instance",
    version="0.10.0",
)

app.include_router(users.router)

register_exception_handlers(app)

if __name__ == "__main__":
    uvicorn.run("stash_adduser.main:app", host="127.0.0.1", port=8001, log_level="info")
