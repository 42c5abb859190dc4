import contextlib
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from dental_billing.router.fees import router as fees_router
from dental_billing.router.treatments import router as treatments_router
from dental_billing.router.vouchers import router as vouchers_router
from dental_billing.rule_loader import get_rules
from dental_billing.services.directory_services import DirectoryError, DirectoryUnavailable

logger = logging.getLogger(__name__)


@contextlib.asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Loads the billing rules once on startup so a broken rules file fails fast.
    """
    rules = get_rules()
    logger.info("Billing rules %s loaded (%s)", rules.get("rules_version"), rules.get("currency"))
    yield


app = FastAPI(
    title="Dental Clinic Billing API",
    lifespan=lifespan,
)


app.include_router(treatments_router, prefix="/api")
app.include_router(fees_router, prefix="/api")
app.include_router(vouchers_router, prefix="/api")


@app.exception_handler(DirectoryUnavailable)
async def directory_unavailable_handler(request: Request, exc: DirectoryUnavailable):
    return JSONResponse(
        {"detail": str(exc), "retry": True},
        status_code=503,
    )


@app.exception_handler(DirectoryError)
async def directory_error_handler(request: Request, exc: DirectoryError):
    return JSONResponse(
        {"detail": str(exc)},
        status_code=502,
    )
