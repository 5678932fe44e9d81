from models import db
from models.user import Role
from services.booking_lifecycle import ROLE_AGENT, ROLE_CLIENT, ROLE_HOST

DEFAULT_ROLES = [ROLE_CLIENT, ROLE_HOST, ROLE_AGENT]

def seed_roles():
    existing = {r.name for r in Role.query.all()}
    for name in DEFAULT_ROLES:
        if name not in existing:
            db.session.add(Role(name=name))
    db.session.commit()

def grant_role(user, name: str) -> bool:
    """Attach a role to a user, creating the role row if needed. Returns False if already held."""
    role = Role.query.filter_by(name=name).first()
    if role is None:
        role = Role(name=name)
        db.session.add(role)
    if role in user.roles:
        return False
    user.roles.append(role)
    db.session.commit()
    return True
