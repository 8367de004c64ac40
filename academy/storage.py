import logging
import mimetypes
import uuid

from django.conf import settings
from django.core.files.base import ContentFile
from django.core.files.storage import default_storage

from academy.exceptions import ObjectStoreUnavailable

logger = logging.getLogger(__name__)


class DjangoObjectStore:
    """Object store over a Django storage backend: ``put`` returns a fetchable URL."""

    def __init__(self, storage=None, prefix: str = 'uploads'):
        self.storage = storage or default_storage
        self.prefix = prefix.strip('/')

    def put(self, data: bytes, content_type: str) -> str:
        ext = mimetypes.guess_extension(content_type) or ''
        name = f'{self.prefix}/{uuid.uuid4().hex}{ext}'
        try:
            saved = self.storage.save(name, ContentFile(data))
            return self.storage.url(saved)
        except OSError as e:
            logger.error('Failed to store %s object %s: %s', content_type, name, e)
            raise ObjectStoreUnavailable()


def build_object_store() -> DjangoObjectStore:
    return DjangoObjectStore(prefix=settings.CERTIFICATE_STORAGE_PREFIX)
