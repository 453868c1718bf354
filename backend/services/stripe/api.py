from fastapi import HTTPException, Request

from core.base_api import BaseAPI, get, post
from core.base_utils import BaseUtils
from core.decorators import cron_secret_required
from core.errors import NotConnectedError, SyncCooldownError, SyncInProgressError
from core.registry import ServiceRegistry
from core.logger import Logger
from .cron import run_sweep
from .models import SyncRequest, ValidateRequest
from .service import StripeIngestionService
from .sync import stripe_handler

logger = Logger(__name__)


class StripeAPI(BaseAPI):
    service: StripeIngestionService
    utils: BaseUtils

    @post("/connect/validate")
    async def validate_key(self, payload: ValidateRequest):
        if not payload.api_key.strip():
            raise HTTPException(status_code=400, detail="API key required")
        result = await self.service.validate_credential(payload.api_key.strip())
        if not result["valid"]:
            raise HTTPException(status_code=400, detail=result["error"])
        return result

    @post("/connect/sync")
    async def sync(self, payload: SyncRequest):
        try:
            result = await stripe_handler.run(
                payload.merchant_id,
                api_key=payload.api_key,
                full_sync=payload.full_sync,
            )
        except NotConnectedError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except SyncInProgressError as e:
            raise HTTPException(status_code=409, detail=str(e))
        except SyncCooldownError as e:
            raise HTTPException(status_code=429, detail=str(e))

        if not result.success:
            raise HTTPException(status_code=500, detail=result.error)
        return {
            "success": True,
            "synced": {
                "customers": result.customers,
                "subscriptions": result.subscriptions,
                "events": result.events,
            },
        }

    @get("/connection/{merchant_id}")
    async def get_connection(self, merchant_id: str):
        connection = await self.service.get_connection(merchant_id)
        if not connection:
            raise HTTPException(status_code=404, detail="No Stripe connection found")
        return self.utils.sanitize_mongo_doc(
            self.utils.strip_private(connection, "stripe_api_key_encrypted")
        )

    @post("/cron/sync")
    @cron_secret_required
    async def cron_sync(self, request: Request):
        results = await run_sweep(service=self.service)
        return {"synced": len(results), "results": results}


ServiceRegistry.register_api("stripe", StripeAPI("/stripe").router)
