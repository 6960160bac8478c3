from __future__ import annotations

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from backend.app.core.config import Settings


def create_db_engine(settings: Settings) -> Engine:
    """
    Crée le pool de connexions du process.

    Le pool est créé au démarrage (lifespan) et disposé à l'arrêt ;
    il n'existe pas d'engine global au niveau module.
    """
    url = settings.database_url

    if url.startswith("sqlite"):
        engine = create_engine(
            url,
            connect_args={
                "check_same_thread": False,
                "timeout": max(settings.db_lock_timeout_ms, 1) / 1000,
            },
        )
        _use_immediate_transactions(engine)
        return engine

    connect_args = {}
    if url.startswith("postgresql"):
        # borne l'attente sur SELECT ... FOR UPDATE
        connect_args["options"] = f"-c lock_timeout={settings.db_lock_timeout_ms}"

    return create_engine(
        url,
        pool_pre_ping=True,
        pool_size=settings.db_pool_size,
        connect_args=connect_args,
    )


def _use_immediate_transactions(engine: Engine) -> None:
    # SQLite n'a pas de verrou de ligne : BEGIN IMMEDIATE prend le verrou
    # d'écriture de la base dès le début de la transaction.
    # Nécessaire aussi pour que les SAVEPOINT fonctionnent avec pysqlite.
    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def create_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
