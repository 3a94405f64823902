import logging

from app.utils import utcnow

import app.database as _db
from app.config import settings
from app.models.user import Role
from app.services.auth_service import hash_password

logger = logging.getLogger("fortunabet.seed")


async def ensure_startup_admin() -> str | None:
    """Ensure the configured admin account exists at startup.

    Only runs when SEED_ADMIN_EMAIL and SEED_ADMIN_PASSWORD are both set.
    Idempotent: an existing account with that e-mail is promoted and its
    password hash refreshed. Returns the admin's id.
    """
    if not settings.SEED_ADMIN_EMAIL or not settings.SEED_ADMIN_PASSWORD:
        logger.debug("SEED_ADMIN_EMAIL/SEED_ADMIN_PASSWORD not set, admin bootstrap skipped")
        return None

    email = settings.SEED_ADMIN_EMAIL.strip().lower()
    if not email:
        logger.warning("Admin bootstrap skipped: empty SEED_ADMIN_EMAIL")
        return None

    now = utcnow()
    existing = await _db.db.users.find_one({"email": email})
    if existing:
        await _db.db.users.update_one(
            {"_id": existing["_id"]},
            {
                "$set": {
                    "role": Role.admin.value,
                    "is_verified": True,
                    "hashed_password": hash_password(settings.SEED_ADMIN_PASSWORD),
                    "updated_at": now,
                }
            },
        )
        logger.info("Admin bootstrap promoted user: %s", existing["_id"])
        return str(existing["_id"])

    doc = {
        "username": settings.SEED_ADMIN_USERNAME,
        "email": email,
        "hashed_password": hash_password(settings.SEED_ADMIN_PASSWORD),
        "role": Role.admin.value,
        "balance": 0.0,
        "personal_info": {"phone_verified": False},
        "is_verified": True,
        "last_username_change": None,
        "created_at": now,
        "updated_at": now,
    }
    result = await _db.db.users.insert_one(doc)
    logger.info("Admin bootstrap created admin: %s", result.inserted_id)
    return str(result.inserted_id)
