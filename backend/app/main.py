from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import settings
from app.middleware.exceptions import register_exception_handlers
from app.routers import auth, health, pages, research, reservations
from app.services.scheduler import lifespan

app = FastAPI(
    title="Atomity",
    description="Company reservation and competitive-intelligence research",
    version="0.1.0",
    lifespan=lifespan,
)

# ── Exception Handlers ───────────────────────────────────────
register_exception_handlers(app)

# ── Middleware ───────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins.split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ── Routers ──────────────────────────────────────────────────
app.include_router(health.router)
app.include_router(auth.router, prefix="/api/auth", tags=["auth"])
app.include_router(reservations.router, prefix="/api/reservations", tags=["reservations"])
app.include_router(research.router, prefix="/api/research", tags=["research"])

# Browser routes last: includes the catch-all redirect to /login
app.include_router(pages.router)
