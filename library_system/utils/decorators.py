from functools import wraps

from flask import g
from flask_jwt_extended import get_jwt_identity, verify_jwt_in_request

from library_system.errors import Unauthorized
from library_system.repositories.user_repo import UserRepo
from library_system.utils import policy


def current_user():
    return g.get("current_user")


def authorize(action=None):
    """
    JWT required; loads the actor into g.current_user and checks `action`
    against the policy. Actions that depend on resource ownership are checked
    again in the view with policy.require(actor, action, resource).
    """
    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            verify_jwt_in_request()
            user = UserRepo.get_by_id(int(get_jwt_identity()))
            if not user or not user.is_active:
                raise Unauthorized("Account not found or deactivated")
            g.current_user = user

            if action and not policy.requires_resource(action):
                policy.require(user, action)
            return fn(*args, **kwargs)
        return wrapper
    return decorator
