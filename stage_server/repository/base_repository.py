from abc import ABC, abstractmethod


class BaseRepository(ABC):
    """Thin wrapper over one Mongo collection.

    Subclasses add the domain operations on top of ``collection``.
    """

    collection_name = None

    def __init__(self, db, collection_name=None):
        self.db = db
        self.collection_name = collection_name or self.collection_name
        self.collection = db[self.collection_name]

    @abstractmethod
    def create(self, data):
        """Insert a new document into the collection."""

