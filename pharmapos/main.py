# pharmapos/main.py
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from pharmapos.api.exception_handlers import register_exception_handlers
from pharmapos.api.router import api_router
from pharmapos.core.config import settings

logging.basicConfig(
    level=getattr(logging, str(settings.LOG_LEVEL).upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(
    title=settings.PROJECT_NAME,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.BACKEND_CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

app.include_router(api_router, prefix=settings.API_V1_STR)


# Health
@app.get("/")
def root():
    return {"message": "Pharmacy POS API running", "version": "v1"}
