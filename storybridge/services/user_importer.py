"""Import of user accounts from external servers"""
import logging
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from storybridge.errors import Forbidden
from storybridge.models import User
from storybridge.models.base import utcnow
from storybridge.models.user import USER_TYPES
from storybridge.services.media import MediaService
from storybridge.services.store import save_with_retry
from storybridge.services.transport import Transport
from storybridge.sync.links import ExternalLink, ObjectKeys, ObjectRef, find_one_by_link, inherit_link
from storybridge.sync.merge import import_property
from storybridge.sync.paths import get_path

logger = logging.getLogger(__name__)


def accepts_new_users(server) -> bool:
    user_settings = (server.settings or {}).get("user") or {}
    if user_settings.get("type"):
        return True
    return any((user_settings.get("mapping") or {}).values())


def mapped_user_type(server, gl_user: Dict[str, Any]) -> Optional[str]:
    """Local user type for a GitLab account according to the server's settings."""
    user_settings = (server.settings or {}).get("user") or {}
    mapping = user_settings.get("mapping") or {}
    if gl_user.get("is_admin"):
        role = "admin"
    elif gl_user.get("external"):
        role = "external"
    else:
        role = "user"
    user_type = mapping.get(role) or user_settings.get("type")
    if user_type and user_type not in USER_TYPES:
        logger.warning(f"Server {server.id} maps '{role}' to unknown user type '{user_type}'")
        return None
    return user_type


def _rank(user_type: Optional[str]) -> int:
    return USER_TYPES.index(user_type) if user_type in USER_TYPES else -1


class UserImporter:
    """Finds or creates the local user behind an external account"""

    def __init__(self, db: Session, transport: Optional[Transport] = None, media: Optional[MediaService] = None):
        self.db = db
        self.transport = transport or Transport()
        self.media = media or MediaService()

    def find_linked(self, server, gl_user_id) -> Optional[User]:
        criteria = ExternalLink(
            type="gitlab", server_id=server.id, keys=ObjectKeys(user=ObjectRef(id=gl_user_id))
        )
        return find_one_by_link(self.db, User, criteria)

    def find_or_import(self, server, gl_user_id) -> User:
        """Local user linked to ``gl_user_id``, fetching the profile when not linked yet."""
        user = self.find_linked(server, gl_user_id)
        if user is not None:
            return user
        gl_user = self.transport.fetch(server, f"/users/{gl_user_id}")
        return self.import_user(server, gl_user)

    def import_user(self, server, gl_user: Dict[str, Any]) -> User:
        user = self.find_linked(server, gl_user["id"])
        email = gl_user.get("email") or gl_user.get("public_email")
        if user is None and email:
            user = (
                self.db.query(User)
                .filter(User.email == email, User.deleted == False)  # noqa: E712
                .order_by(User.id)
                .first()
            )
            if user is not None:
                logger.info(f"Matched GitLab user {gl_user['id']} to {user!r} by email")

        user_type = mapped_user_type(server, gl_user)
        if user is None:
            if not accepts_new_users(server) or not user_type:
                raise Forbidden(f"Server '{server.name}' does not accept new users")
            user = User(type=user_type, details={}, links=[], exchange=[])
            self.db.add(user)
            logger.info(f"Creating user for GitLab account '{gl_user.get('username')}' on server {server.id}")

        image = self._profile_image(user, gl_user.get("avatar_url"))

        def apply(user: User) -> None:
            inherit_link(user, "gitlab", server.id, {"user": {"id": gl_user["id"]}})
            changed = False
            changed |= import_property(
                user, "gitlab", server.id, "username", gl_user.get("username"), "match-previous:username"
            )
            changed |= import_property(
                user, "gitlab", server.id, "details.name", gl_user.get("name"), "match-previous:details.name"
            )
            if email:
                changed |= import_property(user, "gitlab", server.id, "email", email, "match-previous:email")
            if user_type and _rank(user_type) > _rank(user.type):
                # Imported accounts can gain privileges, never lose them
                changed |= import_property(user, "gitlab", server.id, "type", user_type)
            if image is not None:
                changed |= import_property(
                    user, "gitlab", server.id, "details.profile_image", image, "match-previous:details.profile_image"
                )
            if changed:
                user.itime = utcnow()

        return save_with_retry(self.db, user, apply)

    def _profile_image(self, user: User, avatar_url: Optional[str]) -> Optional[Dict[str, Any]]:
        if not avatar_url:
            return None
        current = get_path(user, "details.profile_image") or {}
        if current.get("source_url") == avatar_url:
            return current
        image = self.media.import_image(avatar_url)
        if image is None:
            return None
        return {**image, "source_url": avatar_url}
