from fastapi import APIRouter

from app.api.v1.endpoints import (
    activity_logs,
    appointments,
    auth,
    customers,
    dashboard,
    establishments,
    feedback,
    financial,
    loyalty,
    professionals,
    referrals,
    services,
    uploads,
)

api_router = APIRouter()

api_router.include_router(auth.router, prefix="/auth", tags=["auth"])
api_router.include_router(establishments.router, prefix="/establishments", tags=["establishments"])
api_router.include_router(professionals.router, prefix="/professionals", tags=["professionals"])
api_router.include_router(customers.router, prefix="/customers", tags=["customers"])
# Customer sub-resources share the /customers prefix
api_router.include_router(loyalty.router, prefix="/customers", tags=["loyalty"])
api_router.include_router(referrals.router, prefix="/customers", tags=["referrals"])
api_router.include_router(feedback.router, prefix="/customers", tags=["feedback"])
api_router.include_router(services.router, prefix="/services", tags=["services"])
api_router.include_router(appointments.router, prefix="/appointments", tags=["appointments"])
api_router.include_router(financial.router, prefix="/financial", tags=["financial"])
api_router.include_router(uploads.router, prefix="/uploads", tags=["uploads"])
api_router.include_router(dashboard.router, prefix="/dashboard", tags=["dashboard"])
api_router.include_router(activity_logs.router, prefix="/activity-logs", tags=["activity-logs"])
