import datetime
import logging
from typing import Optional

import jwt
from django.conf import settings

from academy.models import CustomUser
from academy.repositories import UserRepository

logger = logging.getLogger(__name__)

ALGORITHM = 'HS256'


def issue_token(user: CustomUser) -> str:
    now = datetime.datetime.now(datetime.timezone.utc)
    payload = {
        'id': str(user.id),
        'username': user.username,
        'is_admin': user.is_administrator,
        'exp': now + datetime.timedelta(hours=settings.JWT_TTL_HOURS),
        'iat': now,
    }
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=ALGORITHM)


def get_user_from_token(request) -> Optional[CustomUser]:
    auth_header = request.META.get('HTTP_AUTHORIZATION')
    if not auth_header or not auth_header.startswith('Bearer '):
        return None
    token = auth_header.split(' ', 1)[1]

    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[ALGORITHM])
        return UserRepository.get_by_id(payload['id'])
    except (jwt.PyJWTError, KeyError) as e:
        logger.debug('Rejected bearer token: %s', e)
        return None


def authenticate(identifier: str, password: str) -> Optional[CustomUser]:
    user = UserRepository.get_by_username_or_email(identifier)
    if user is None or not user.is_active or not user.check_password(password):
        return None
    return user
