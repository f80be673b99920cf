import os
import sys
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

import argparse

from dotenv import load_dotenv

from algoqube.core.database import Base, SessionLocal, engine
from algoqube.core.db_models import DBUser
from algoqube.core.logging import configure_logging, get_logger
from algoqube.services.origin_resolver import OriginResolver

logger = get_logger(__name__)

# Load environment variables
load_dotenv()


def check_users():
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        users = db.query(DBUser).order_by(DBUser.created_at).all()
        if not users:
            print("No users found in database")
            print("You can create a user with POST /api/users/register")
            return
        print(f"Found {len(users)} user(s):")
        for index, user in enumerate(users, start=1):
            print(f"{index}. ID: {user.id}, Email: {user.email}, Name: {user.name or 'N/A'}, Created: {user.created_at}")
    finally:
        db.close()


def show_cors_origins():
    Base.metadata.create_all(bind=engine)
    for origin in OriginResolver().get_allowed_origins():
        print(origin)


def main():
    configure_logging()
    parser = argparse.ArgumentParser(description="Algoqube chatbox backend")
    subparsers = parser.add_subparsers(dest="command")

    serve = subparsers.add_parser("serve", help="Run the API server")
    serve.add_argument("--host", default=os.getenv("HOST", "0.0.0.0"))
    serve.add_argument("--port", type=int, default=int(os.getenv("PORT", "4000")))
    serve.add_argument("--reload", action="store_true", help="Reload on code changes (development only)")

    subparsers.add_parser("check-users", help="List registered users")
    subparsers.add_parser("cors-origins", help="Print the current CORS allowlist")

    args = parser.parse_args()

    if args.command == "check-users":
        check_users()
    elif args.command == "cors-origins":
        show_cors_origins()
    else:
        import uvicorn

        host = getattr(args, "host", "0.0.0.0")
        port = getattr(args, "port", 4000)
        logger.info("Starting API server.", extra={"host": host, "port": port})
        uvicorn.run(
            "algoqube.api.app:app",
            host=host,
            port=port,
            reload=getattr(args, "reload", False),
        )


if __name__ == "__main__":
    main()
