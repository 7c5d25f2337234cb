from rankbeam.api.routes.licenses import router as licenses_router
from rankbeam.api.routes.paystack import router as paystack_router

__all__ = ["licenses_router", "paystack_router"]
