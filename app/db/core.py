from sqlmodel import Session, SQLModel, create_engine

from app.core.config import settings


def build_engine(database_url: str):
    connect_args = {}
    if database_url.startswith("sqlite"):
        # FastAPI serves sync routes from a thread pool
        connect_args["check_same_thread"] = False
    return create_engine(database_url, connect_args=connect_args)


engine = build_engine(settings.database_url)


def get_session():
    with Session(engine) as session:
        yield session


def init_db(bind=None):
    """Creates all tables registered on the SQLModel metadata."""
    # Registers the table models on the metadata
    import app.db.schema  # noqa: F401

    SQLModel.metadata.create_all(bind or engine)
