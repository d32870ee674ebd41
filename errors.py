class ValidationFailed(ValueError):
    """Input rejected before anything was written."""


class NotFound(ValueError):
    """Referenced record is absent or belongs to another user."""


def require_user_id(user_id: object) -> int:
    if isinstance(user_id, bool) or not isinstance(user_id, int) or user_id <= 0:
        raise ValidationFailed("A valid user id is required")
    return user_id
