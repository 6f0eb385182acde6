from sqlmodel import Session, SQLModel, create_engine

from app.core.config import settings


connect_args = {}
if settings.database_url.startswith("sqlite"):
    # TestClient and uvicorn's threadpool share connections across threads
    connect_args = {"check_same_thread": False}

engine = create_engine(settings.database_url, connect_args=connect_args)


def get_session():
    with Session(engine) as session:
        yield session


def init_db():
    """Creates all tables. Production databases are managed by Alembic."""
    # Import registers every table on SQLModel.metadata
    from app.db import schema  # noqa: F401

    SQLModel.metadata.create_all(engine)
