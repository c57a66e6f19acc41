# Overview: Flask extension instances for database and migrations, plus SQLite transaction wiring.

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from sqlalchemy import event

db = SQLAlchemy()
migrate = Migrate()


def configure_sqlite_transactions(engine) -> None:
    """
    Let SQLAlchemy own BEGIN on pysqlite so SAVEPOINTs nest inside the outer
    transaction (the driver's implicit BEGIN skips SAVEPOINT, and releasing an
    outermost savepoint would otherwise commit early).
    """
    if engine.dialect.name != "sqlite":
        return

    @event.listens_for(engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")
