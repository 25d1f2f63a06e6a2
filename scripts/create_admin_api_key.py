"""Create an admin user (if missing) and print a fresh API key for it."""
from sqlalchemy import select

from app.db import init_engine, session_scope
from app.models.api_key import ApiKey
from app.models.user import Role, User
from app.utils.apikey import gen_key


def main() -> None:
    init_engine()
    with session_scope() as db:
        admin = db.scalars(select(User).where(User.username == "admin")).first()
        if admin is None:
            admin = User(username="admin", email="admin@example.com", role=Role.ADMIN, is_active=True)
            db.add(admin)
            db.flush()

        raw, prefix, key_hash = gen_key()
        api_key = ApiKey(
            name=f"admin-{prefix}",
            prefix=prefix,
            key_hash=key_hash,
            user_id=admin.id,
            is_active=True,
        )
        db.add(api_key)
        db.commit()
        db.refresh(api_key)

        print("==========================================")
        print("Admin API key created")
        print("Use this key in your Authorization header:")
        print(f"    Authorization: Bearer {raw}")
        print(f"(DB id: {api_key.id}, user: {admin.username})")
        print("==========================================")


if __name__ == "__main__":
    main()
