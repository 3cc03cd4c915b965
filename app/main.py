from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging
from app.api import subscriptions, webhooks
from app.core.config import settings
from app.core.exceptions import BillingError

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(title="Cooperative Subscriptions API", version="1.0.0")

ALLOWED_ORIGINS = settings.get_allowed_origins()

# CORS headers are added even on errors via the exception handlers below
app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _with_cors(request: Request, response: JSONResponse) -> JSONResponse:
    origin = request.headers.get("origin")
    if origin and origin in ALLOWED_ORIGINS:
        response.headers["Access-Control-Allow-Origin"] = origin
        response.headers["Access-Control-Allow-Credentials"] = "true"
    return response


@app.exception_handler(BillingError)
async def billing_exception_handler(request: Request, exc: BillingError):
    return _with_cors(request, JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "message": exc.message, "data": None},
    ))


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Ensure CORS headers are included even on unhandled exceptions"""
    logger.exception(f"Unhandled exception: {str(exc)}")
    return _with_cors(request, JSONResponse(
        status_code=500,
        content={"success": False, "message": "Internal server error", "data": None},
    ))


app.include_router(subscriptions.router, prefix="/subscriptions", tags=["subscriptions"])
app.include_router(webhooks.router, prefix="/webhooks", tags=["webhooks"])


@app.get("/")
async def root():
    return {"message": "Cooperative Subscriptions API", "version": "1.0.0"}


@app.get("/health")
async def health():
    return {"status": "healthy"}
