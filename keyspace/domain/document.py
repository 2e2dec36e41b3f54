from datetime import datetime, timezone
from typing import ClassVar

from pydantic import BaseModel, Field

from .exceptions import InvalidKeyError


def utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


class Document(BaseModel):
    """Base class for every entity stored through a document repository.

    A document lives under a single key in the key-value store. The key is the
    document's `id` and always starts with the document type's `base_key`,
    which acts as a namespace so that documents of different types never
    collide in the store or in the process-wide local cache.

    The id can either be assigned directly or derived from a natural key by
    overriding `natural_key`. In the latter case the id is resolved lazily the
    first time it is needed (usually when the document is added to a working
    set or saved), which allows a document to be created first and filled in
    afterwards.

    `modify_date` is the only "is new" signal: it is None until the document
    has been written through `DocumentRepository.save`.

    Examples:
        >>> class Member(Document):
        ...     base_key: ClassVar[str] = "member"
        ...     member_id: str = ""
        ...     title: str = ""
        ...
        ...     def natural_key(self) -> str | None:
        ...         return self.member_id or None
        >>>
        >>> member = Member(member_id="abc", title="Alice")
        >>> member.ensure_id()
        'member:abc'

    Attributes:
        id: Fully-qualified key of the document (`base_key:natural_key`).
        create_date: When the document was allocated.
        modify_date: When the document was last saved, None if never saved.
    """

    base_key: ClassVar[str]

    id: str | None = None
    create_date: datetime = Field(default_factory=utc_now)
    modify_date: datetime | None = None

    def natural_key(self) -> str | None:
        """Return the part of the id that follows the base key.

        Override this to derive ids from document fields. The default returns
        None, meaning the id must be assigned explicitly.
        """
        return None

    def ensure_id(self) -> str:
        """Resolve and return the document id.

        Raises:
            InvalidKeyError: If the id is unset and no natural key is available.
        """
        if self.id is None:
            natural_key = self.natural_key()
            if not natural_key:
                raise InvalidKeyError(
                    f"{type(self).__name__} has neither an id nor a natural key"
                )
            self.id = f"{self.base_key}:{natural_key}"
        return self.id

    @property
    def is_new(self) -> bool:
        return self.modify_date is None

    def serialize(self) -> str:
        """Return the stored form of the document.

        The base key is a class variable and therefore never part of it.
        """
        return self.model_dump_json()

    @classmethod
    def deserialize(cls, data: str | bytes) -> "Document":
        return cls.model_validate_json(data)

    @classmethod
    def qualify(cls, key: str) -> str:
        """Prefix a key or pattern with `base_key:` unless it already starts with it.

        Examples:
            >>> Member.qualify("abc")
            'member:abc'
            >>> Member.qualify("member:abc")
            'member:abc'
            >>> Member.qualify("membership")
            'member:membership'
        """
        if not key:
            raise InvalidKeyError("Keys and patterns must not be empty")
        if key.startswith(f"{cls.base_key}:"):
            return key
        return f"{cls.base_key}:{key}"
