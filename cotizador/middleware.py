# cotizador/middleware.py
from fastapi import FastAPI
from starlette.middleware.cors import CORSMiddleware

from cotizador.config import get_settings

def install_middlewares(app: FastAPI) -> None:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=get_settings().cors_origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Merge-Strategy", "Content-Disposition"],
        max_age=86400,
    )
