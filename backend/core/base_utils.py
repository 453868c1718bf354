import os
from bson import ObjectId
from datetime import datetime, date
from cryptography.fernet import Fernet, InvalidToken
from core.base_database import BaseDatabase
from core.logger import Logger

logger = Logger(__name__)


class BaseUtils(BaseDatabase):
    def __init__(self):
        pass

    def sanitize_mongo_doc(self, doc):
        """Make a Mongo document JSON-friendly (ObjectId -> str, datetime -> ISO string)."""
        if isinstance(doc, dict):
            return {k: self.sanitize_mongo_doc(v) for k, v in doc.items()}

        elif isinstance(doc, list):
            return [self.sanitize_mongo_doc(item) for item in doc]

        elif isinstance(doc, ObjectId):
            return str(doc)

        elif isinstance(doc, (datetime, date)):
            return doc.isoformat()

        else:
            return doc

    def strip_private(self, doc: dict, *fields: str) -> dict:
        """Drop the Mongo _id plus any named fields before a document leaves the API."""
        if not doc:
            return {}
        hidden = {"_id", *fields}
        return {k: v for k, v in doc.items() if k not in hidden}

    def _get_fernet(self) -> Fernet:
        key = os.getenv("PROJECTS_SECRET_KEY")
        if not key:
            raise RuntimeError("PROJECTS_SECRET_KEY env var not set")
        return Fernet(key)

    def encode_secret(self, value: str) -> str:
        return self._get_fernet().encrypt(value.encode()).decode()

    def decode_secret(self, token: str) -> str:
        try:
            return self._get_fernet().decrypt(token.encode()).decode()
        except InvalidToken:
            logger.warning("Stored secret could not be decrypted with the current key")
            return ""
