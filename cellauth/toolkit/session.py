"""
The client's session identity.
"""

from cellauth.core.uuid import UUID, uuid4

from .storage import Storage

SESSION_KEY = "cellauth.session_id"


def ensure_session(storage: Storage) -> UUID:
    """
    Return the session id held in `storage`, creating and storing a new one
    on first use. An existing value is never replaced.

    Raises
    ------
    ValueError
        If the stored value is not a session id.
    """
    existing = storage.get(SESSION_KEY)

    if existing is not None:
        return UUID(existing)

    session_id = uuid4()
    storage.set(SESSION_KEY, str(session_id))

    return session_id
