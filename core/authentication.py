import logging

from rest_framework import authentication

logger = logging.getLogger(__name__)

ACTOR_HEADER = 'HTTP_X_ACTOR_UID'


class Actor:
    """The caller as identified upstream. Only the opaque uid is known here."""

    is_authenticated = True
    is_anonymous = False

    def __init__(self, uid):
        self.uid = uid

    def __str__(self):
        return self.uid

    def __eq__(self, other):
        return isinstance(other, Actor) and other.uid == self.uid

    def __hash__(self):
        return hash(self.uid)


class ActorHeaderAuthentication(authentication.BaseAuthentication):
    """
    Trust the identity forwarded by the gateway in the X-Actor-Uid header.
    Sessions and credentials are handled before the request reaches us.
    """

    def authenticate(self, request):
        uid = (request.META.get(ACTOR_HEADER) or '').strip()
        if not uid:
            return None
        return (Actor(uid), None)

    def authenticate_header(self, request):
        return 'X-Actor-Uid'
