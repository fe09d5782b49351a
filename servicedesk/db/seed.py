"""Database seeding for the service desk.

Creates the default roles.
"""

from sqlalchemy.orm import Session
from sqlalchemy import and_

from servicedesk.db.models import Role
from servicedesk.core.rbac.roles import DEFAULT_ROLES


def seed_default_roles(db: Session) -> dict[str, Role]:
    """
    Create the default roles.

    Roles are idempotent - if they already exist, returns existing roles.

    Returns:
        Dict mapping role key to Role object
    """
    created_roles = {}

    for role_key, role_config in DEFAULT_ROLES.items():
        existing = db.query(Role).filter(
            and_(
                Role.name == role_config["name"],
                Role.is_system.is_(True),
            )
        ).first()

        if existing:
            created_roles[role_key] = existing
            continue

        role = Role(
            name=role_config["name"],
            permissions=role_config["permissions"],
            is_system=True,
        )
        db.add(role)
        created_roles[role_key] = role

    db.flush()
    return created_roles


# CLI script for seeding
if __name__ == "__main__":
    import sys
    from servicedesk.db.session import SessionLocal

    db = SessionLocal()
    try:
        roles = seed_default_roles(db)
        db.commit()

        print(f"Seeded {len(roles)} default roles:")
        for role in roles.values():
            perm_count = len(role.permissions) if role.permissions else 0
            perm_display = "all (*:*)" if perm_count == 1 and "*:*" in role.permissions else f"{perm_count} permissions"
            print(f"  - {role.name}: {perm_display}")

    except Exception as e:
        db.rollback()
        print(f"Error: {e}")
        sys.exit(1)
    finally:
        db.close()
