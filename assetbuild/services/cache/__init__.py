"""构建缓存

- store.py: 缓存目录中的持久化文件
- module_cache.py: 单模块编译元数据缓存
- changes_store.py: watch 模式的 changes.json
- build_cache.py: BuildCache 门面（加载、作废策略、变更判定、保存）
"""

from assetbuild.services.cache.build_cache import BuildCache
from assetbuild.services.cache.changes_store import ChangesStore
from assetbuild.services.cache.module_cache import ModuleCache
from assetbuild.services.cache.store import CacheStore

__all__ = [
    "BuildCache",
    "CacheStore",
    "ChangesStore",
    "ModuleCache",
]
