"""
Single place that answers "may this actor do this action (on this resource)".

Role rules come from POLICY; OWNED_ACTIONS additionally let a member act on
resources that belong to them (their own transactions).
"""
from library_system.errors import Forbidden

ADMIN = "admin"
MEMBER = "member"
ANY = (ADMIN, MEMBER)

POLICY = {
    "book:create": (ADMIN,),
    "book:update": (ADMIN,),
    "book:delete": (ADMIN,),
    "book:stats": ANY,
    "transaction:issue": (ADMIN,),
    "transaction:return": (ADMIN,),
    "transaction:renew": (ADMIN,),
    "transaction:view": (ADMIN,),
    "transaction:list": (ADMIN,),
    "transaction:list_own": ANY,
    "transaction:overdue": (ADMIN,),
    "transaction:remind": (ADMIN,),
    "profile:manage": ANY,
    "admin:users": (ADMIN,),
    "admin:dashboard": (ADMIN,),
    "admin:notify": (ADMIN,),
    "admin:jobs": (ADMIN,),
}

# actions a member may perform on a resource they own
OWNED_ACTIONS = {"transaction:renew", "transaction:view"}

MESSAGES = {
    "transaction:issue": "Admin access required to issue books",
    "transaction:return": "Admin access required to return books",
    "transaction:renew": "You can only renew your own books",
    "transaction:view": "Access denied",
}


def _owner_id(resource):
    return getattr(resource, "user_id", None)


def can(actor, action: str, resource=None) -> bool:
    if actor is None or not actor.is_active:
        return False
    if actor.role in POLICY.get(action, ()):
        return True
    if action in OWNED_ACTIONS and resource is not None:
        return _owner_id(resource) == actor.id
    return False


def requires_resource(action: str) -> bool:
    return action in OWNED_ACTIONS


def require(actor, action: str, resource=None):
    if not can(actor, action, resource):
        raise Forbidden(MESSAGES.get(action, "Access denied"))
