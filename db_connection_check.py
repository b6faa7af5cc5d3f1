import argparse

from sqlalchemy import create_engine, text
from sqlalchemy.exc import SQLAlchemyError

from eventdesk.config import settings
from eventdesk.db import init_db


def check_database(database_url: str, create_tables: bool = False) -> bool:
    engine = create_engine(database_url, pool_pre_ping=True)
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        if create_tables:
            init_db(engine)
    except SQLAlchemyError as exc:
        print("DB connection FAILED")
        print(exc)
        return False
    finally:
        engine.dispose()
    print("DB connection OK")
    return True


def main() -> None:
    parser = argparse.ArgumentParser(description="Check the configured database and QR secret.")
    parser.add_argument("--create-tables", action="store_true", help="create missing tables")
    args = parser.parse_args()

    database_url = settings.database_url
    print(f"DATABASE_URL={database_url}")
    if settings.uses_default_qr_secret:
        print(f"QR_CODE_SECRET is the development default (environment={settings.environment})")
    ok = check_database(database_url, create_tables=args.create_tables)
    raise SystemExit(0 if ok else 1)


if __name__ == "__main__":
    main()
