from __future__ import annotations
from fastapi import Request
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool


Base = declarative_base()


def make_engine(database_url: str) -> Engine:
	connect_args = {"check_same_thread": False} if database_url.startswith("sqlite") else {}
	# In-memory SQLite must share one connection across the threadpool
	poolclass = StaticPool if database_url in ("sqlite://", "sqlite:///:memory:") else None
	kwargs = {"poolclass": poolclass} if poolclass else {}
	return create_engine(database_url, connect_args=connect_args, future=True, **kwargs)


def make_session_factory(engine: Engine) -> sessionmaker:
	return sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True)


def get_db(request: Request):
	# Engine and session factory are built by create_app from its Settings
	db = request.app.state.session_factory()
	try:
		yield db
	finally:
		db.close()


def create_schema(bind: Engine) -> None:
	# Import for side effect: registers the tables on Base.metadata
	from . import models  # noqa: F401
	Base.metadata.create_all(bind=bind)
