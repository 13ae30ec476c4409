import calendar
import hashlib
from userapi.types import User

def hash_password(password):
    return hashlib.sha256(password.encode()).hexdigest()

def _timestamp(value):
    if value is None or isinstance(value, int):
        return value
    return calendar.timegm(value.utctimetuple())

class UserRepository:
    """Read access to user records."""

    allowed = ["id", "username", "password"]
    listing = ["id", "name", "username"]
    max_results = 50

    def __init__(self, storage):
        self.storage = storage

    def find(self, condition=None):
        """
        Returns up to 50 users matching the id, username and/or password
        given in condition; other keys are ignored. Passwords are hashed
        before they are used as a filter. Without an id only the id, name and
        username of each user are returned.
        """
        condition = {
            k: v for k, v in (condition or {}).items()
            if k in self.allowed and v is not None
        }
        if "password" in condition:
            condition["password"] = hash_password(condition["password"])

        query = self.storage.table(User).where(**condition)
        if "id" not in condition:
            query = query.columns(*self.listing)
        query = query.limit(self.max_results)
        return [self._present(row) for row in query.all()]

    def _present(self, row):
        row.pop("password", None)
        if "created_at" in row:
            created = _timestamp(row["created_at"])
            updated = _timestamp(row.get("updated_at")) or created
            row["created_at"] = created
            row["updated_at"] = updated
        return row
