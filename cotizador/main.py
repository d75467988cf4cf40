# cotizador/main.py
from dotenv import load_dotenv
load_dotenv()

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from cotizador.middleware import install_middlewares
from cotizador.logging_config import setup_logging
from cotizador.routers import health, sections, merge, documents

setup_logging()
app = FastAPI(
    title="Cotizador Merge Engine",
    description="Section extraction and static/dynamic document merge for proposal generation",
    version="1.0.0",
)
install_middlewares(app)

# request validation failures map to 400
@app.exception_handler(RequestValidationError)
async def validation_error(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={"detail": jsonable_encoder(exc.errors())})

# Routers
app.include_router(health.router)
app.include_router(sections.router)
app.include_router(merge.router)
app.include_router(documents.router)

@app.get("/")
def root():
    return {"app":"cotizador_merge_engine","status":"running","version":"1.0.0","docs":"/docs"}
