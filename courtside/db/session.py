from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

Base = declarative_base()


class Database:
    """Engine + session factory with an explicit open/close lifecycle."""

    def __init__(self, url: str, **engine_kwargs):
        self.url = url

        if url.startswith("sqlite"):
            connect_args = engine_kwargs.pop("connect_args", {})
            connect_args.setdefault("check_same_thread", False)
            connect_args.setdefault("timeout", 30)
            engine_kwargs["connect_args"] = connect_args
            if ":memory:" in url or url == "sqlite://":
                engine_kwargs.setdefault("poolclass", StaticPool)
        else:
            engine_kwargs.setdefault("pool_pre_ping", True)

        self.engine = create_engine(url, **engine_kwargs)
        self.SessionLocal = sessionmaker(
            bind=self.engine, autoflush=False, expire_on_commit=False
        )

    def create_all(self):
        # Tests and local runs; production schema comes from alembic
        from courtside.models import booking, facility, payment, slot, webhook_event  # noqa: F401

        Base.metadata.create_all(bind=self.engine)

    def session(self):
        return self.SessionLocal()

    def close(self):
        self.engine.dispose()
