import os

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.settings import settings


def _mssql_url() -> str:
    server = settings.DB_SERVER
    # If DB_SERVER already contains a port (":" or ",") or an instance name ("\\"),
    # use it as-is; otherwise append :port
    if any(sep in (server or "") for sep in (":", ",", "\\")):
        hostpart = server
    else:
        hostpart = f"{server}:{settings.DB_PORT}"
    return (
        f"mssql+pyodbc://{settings.DB_USER}:{settings.DB_PASSWORD}@{hostpart}/{settings.DB_NAME}"
        f"?driver={settings.DB_DRIVER.replace(' ', '+')}"
    )


# Tests opt into an in-memory SQLite DB with TEST_SQLITE=1 so no server is needed.
if os.getenv("TEST_SQLITE") == "1":
    # StaticPool so the same in-memory DB is reused across connections.
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
elif settings.DATABASE_URL:
    _kwargs = {}
    if settings.DATABASE_URL.startswith("sqlite"):
        _kwargs["connect_args"] = {"check_same_thread": False}
    engine = create_engine(settings.DATABASE_URL, pool_pre_ping=True, **_kwargs)
else:
    engine = create_engine(
        _mssql_url(),
        pool_pre_ping=True,
        connect_args={
            "TrustServerCertificate": "yes",
            "Encrypt": "yes",
        },
    )

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Tests set this so in-process request handlers (TestClient) share their session.
_TEST_SESSION = None


def get_db():
    if _TEST_SESSION is not None:
        yield _TEST_SESSION
        return

    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
