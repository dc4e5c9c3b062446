import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from src.config import settings
from src.database import Base, SessionLocal, engine
from src.common.handlers import register_exception_handlers
from src.common.middleware import register_middleware
from src.auth import router as auth_router
from src import users, payment, transport, audit, config_management, feedback
from src.config_management.service import ConfigService
from src.payment.poller import payment_poller
from src.transport.cleanup import hold_cleanup
from src.wallet.router import router as wallet_router, admin_router as wallet_admin_router
from src.wallet.service import WalletService
from src.worker.router import router as worker_router
from src.worker.worker import get_worker

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


def bootstrap_database() -> None:
    """Create tables, the system wallets and default settings"""
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        WalletService(db).ensure_system_wallets()
        ConfigService(db).ensure_defaults()
        db.commit()
    finally:
        db.close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    bootstrap_database()
    if settings.BACKGROUND_TASKS_ENABLED:
        get_worker().start()
        hold_cleanup.start()
        payment_poller.reset_stale_locks()
    logger.info("%s started (%s)", settings.PROJECT_NAME, settings.ENVIRONMENT)
    yield
    if settings.BACKGROUND_TASKS_ENABLED:
        payment_poller.stop()
        hold_cleanup.stop()
        get_worker().stop()


# Create FastAPI app
app = FastAPI(
    title=settings.PROJECT_NAME,
    version="1.0.0",
    description="GIKI Transport & Wallet API",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
    allow_headers=["*"],
)

register_middleware(app)
register_exception_handlers(app)

api = settings.API_PREFIX

# Include routers
app.include_router(
    auth_router.router,
    prefix=f"{api}/auth",
    tags=["Authentication"]
)

app.include_router(
    users.router,
    prefix=f"{api}/auth",
    tags=["Authentication"]
)

app.include_router(
    wallet_router,
    prefix=f"{api}/wallet",
    tags=["Wallet"]
)

app.include_router(
    payment.router,
    prefix=f"{api}/payment",
    tags=["Payment"]
)

app.include_router(
    transport.router,
    prefix=f"{api}/transport",
    tags=["Transport"]
)

app.include_router(
    config_management.router,
    prefix=f"{api}/config",
    tags=["Config"]
)

app.include_router(
    feedback.router,
    prefix=f"{api}/feedback",
    tags=["Feedback"]
)

# Admin routers
for admin_router, tag in [
    (users.admin_router, "Admin Users"),
    (wallet_admin_router, "Admin Wallets"),
    (payment.admin_router, "Admin Payments"),
    (transport.admin_router, "Admin Transport"),
    (audit.router, "Admin Audit"),
    (worker_router, "Admin Worker"),
    (config_management.admin_router, "Admin Settings"),
    (feedback.admin_router, "Admin Feedback"),
]:
    app.include_router(admin_router, prefix=f"{api}/admin", tags=[tag])

@app.get("/")
def root():
    """Root endpoint"""
    return {
        "message": "GIKI Transport & Wallet API",
        "version": "1.0.0",
        "docs": "/docs"
    }

@app.get("/health")
def health_check():
    """Service and database health"""
    database = "up"
    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError:
        logger.exception("health check database ping failed")
        database = "down"
    finally:
        db.close()
    return {"status": "healthy", "database": database}

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("src.main:app", host="0.0.0.0", port=settings.PORT)
