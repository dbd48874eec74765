"""
玩家条目存储
已解析身份的持久化记录，只追加 / 更新，解析管线从不删除。

  LocalEntryStore  本地键值存储：内存索引 + 可选 JSON Lines 追加日志
  MongoEntryStore  远程文档存储：MongoDB players 集合
"""

import json
import logging
import os
from typing import Dict, Optional

from pymongo.errors import PyMongoError

from skyblock_service.config import settings
from skyblock_service.db import get_mongo_db
from skyblock_service.errors import StoreError
from skyblock_service.models.entities import Identity

logger = logging.getLogger(__name__)


class EntryStore:
    """条目存储接口"""

    async def open(self) -> None:
        pass

    async def close(self) -> None:
        pass

    async def find_by_name(self, name: str) -> Optional[Identity]:
        raise NotImplementedError

    async def find_by_id(self, identity_id: str) -> Optional[Identity]:
        raise NotImplementedError

    async def insert(self, identity: Identity) -> None:
        raise NotImplementedError


class LocalEntryStore(EntryStore):
    """本地玩家存储，path 为空时只保存在内存中"""

    def __init__(self, path: Optional[str] = None):
        self._path = path or None
        self._by_id: Dict[str, Identity] = {}
        self._by_name: Dict[str, str] = {}

    async def open(self) -> None:
        if not self._path or not os.path.exists(self._path):
            return
        try:
            with open(self._path, "r", encoding="utf-8") as fh:
                for line in fh:
                    line = line.strip()
                    if line:
                        self._index(Identity.model_validate(json.loads(line)))
        except (OSError, ValueError) as exc:
            raise StoreError(f"本地玩家存储读取失败: {exc}") from exc
        logger.info(f"本地玩家存储已加载 {len(self._by_id)} 条: {self._path}")

    def _index(self, identity: Identity) -> None:
        previous = self._by_id.get(identity.id)
        if previous is not None:
            self._by_name.pop(previous.name.lower(), None)
        self._by_id[identity.id] = identity
        self._by_name[identity.name.lower()] = identity.id

    async def find_by_name(self, name: str) -> Optional[Identity]:
        identity_id = self._by_name.get(name.lower())
        if identity_id is None:
            logger.debug(f"本地存储未找到玩家: {name}")
            return None
        return self._by_id[identity_id]

    async def find_by_id(self, identity_id: str) -> Optional[Identity]:
        return self._by_id.get(identity_id)

    async def insert(self, identity: Identity) -> None:
        logger.info(f"保存玩家 {identity.name} ({identity.id})")
        if self._path:
            try:
                os.makedirs(os.path.dirname(os.path.abspath(self._path)), exist_ok=True)
                with open(self._path, "a", encoding="utf-8") as fh:
                    fh.write(identity.model_dump_json() + "\n")
            except OSError as exc:
                raise StoreError(f"本地玩家存储写入失败: {exc}") from exc
        self._index(identity)


class MongoEntryStore(EntryStore):
    """远程文档存储，文档 _id 即玩家 id"""

    def __init__(self, collection_name: Optional[str] = None):
        self._collection_name = collection_name or settings.MONGODB_PLAYER_COLLECTION

    def _collection(self):
        db = get_mongo_db()
        if db is None:
            raise StoreError("MongoDB 未连接")
        return db[self._collection_name]

    async def open(self) -> None:
        try:
            await self._collection().create_index("name_lower")
        except PyMongoError as exc:
            raise StoreError(f"MongoDB 索引创建失败: {exc}") from exc

    @staticmethod
    def _to_identity(doc: Optional[dict]) -> Optional[Identity]:
        if not doc:
            return None
        return Identity(id=doc["_id"], name=doc["name"])

    async def find_by_name(self, name: str) -> Optional[Identity]:
        try:
            doc = await self._collection().find_one({"name_lower": name.lower()})
        except PyMongoError as exc:
            raise StoreError(f"MongoDB 读取失败: {exc}") from exc
        return self._to_identity(doc)

    async def find_by_id(self, identity_id: str) -> Optional[Identity]:
        try:
            doc = await self._collection().find_one({"_id": identity_id})
        except PyMongoError as exc:
            raise StoreError(f"MongoDB 读取失败: {exc}") from exc
        return self._to_identity(doc)

    async def insert(self, identity: Identity) -> None:
        logger.info(f"保存玩家 {identity.name} ({identity.id}) 到 MongoDB")
        try:
            await self._collection().update_one(
                {"_id": identity.id},
                {"$set": {"name": identity.name, "name_lower": identity.name.lower()}},
                upsert=True,
            )
        except PyMongoError as exc:
            raise StoreError(f"MongoDB 写入失败: {exc}") from exc


# ── 模块级别单例 ──────────────────────────────────────────
_entry_store: Optional[EntryStore] = None


def get_entry_store() -> EntryStore:
    global _entry_store
    if _entry_store is None:
        if settings.ENTRY_STORE_BACKEND == "mongodb":
            _entry_store = MongoEntryStore()
        else:
            _entry_store = LocalEntryStore(settings.LOCAL_STORE_PATH)
    return _entry_store
