import os
from typing import Dict
from core.logger import Logger

logger = Logger(__name__)

SKIP_INDEX_REGISTRATION = os.getenv("SKIP_INDEX_REGISTRATION", "false").lower() == "true"


class ServiceRegistry:
    _services: Dict[str, object] = {}
    _apis: Dict[str, object] = {}

    @classmethod
    def register_service(cls, name: str, service: object):
        """Register a service; its Mongo indexes are created later by ensure_indexes()."""
        cls._services[name] = service

    @classmethod
    def get_service(cls, name: str):
        return cls._services.get(name)

    @classmethod
    async def ensure_indexes(cls, mongodb):
        """Create the natural-key indexes declared by every registered service."""
        if SKIP_INDEX_REGISTRATION:
            logger.info("Skipping Mongo index registration due to SKIP_INDEX_REGISTRATION setting.")
            return
        for name, service in cls._services.items():
            specs = getattr(service, "indexes", None)
            if not specs:
                continue
            try:
                await mongodb.ensure_indexes(specs)
                logger.info(f"[{name}] Mongo indexes ensured for {list(specs.keys())}")
            except Exception as e:
                logger.error(f"Failed to create Mongo indexes for service {name}: {e}")

    @classmethod
    def register_api(cls, name: str, router):
        """Register an API router for the service."""
        if name in cls._apis:
            logger.warning(f"API name conflict for name {name}, {router.prefix} is already registered under route {cls._apis[name].prefix}, overwriting.")
        cls._apis[name] = router

    @classmethod
    def get_all_apis(cls):
        """Get all registered API routers."""
        return cls._apis.values()
