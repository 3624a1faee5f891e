"""
Subscription management API endpoints (renewals, expirations, reactivation)
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from billflow.api.deps import get_background_notifier, get_db, http_errors
from billflow.api.v1.subscriptions import SubscriptionResponse
from billflow.application.notifications import SessionNotifier
from billflow.application.renewals import SubscriptionRenewalService


router = APIRouter(prefix="/api/v1/subscription-management", tags=["subscription-management"])


def _service(
    db: Session = Depends(get_db),
    notifier: SessionNotifier = Depends(get_background_notifier),
) -> SubscriptionRenewalService:
    return SubscriptionRenewalService(db, notifier=notifier)


@router.post("/process-auto-renewals")
def process_auto_renewals(service: SubscriptionRenewalService = Depends(_service)):
    """Renew every due auto-renewal subscription"""
    return service.process_auto_renewals()


@router.post("/process-expired")
def process_expired(service: SubscriptionRenewalService = Depends(_service)):
    """Cancel manual-renewal subscriptions whose billing date has passed"""
    return service.process_expired_subscriptions()


@router.post("/{sub_id}/manual-renew")
def manual_renew(sub_id: int, service: SubscriptionRenewalService = Depends(_service)):
    with http_errors():
        return service.manual_renew(sub_id)


@router.post("/{sub_id}/reactivate")
def reactivate(sub_id: int, service: SubscriptionRenewalService = Depends(_service)):
    with http_errors():
        return service.reactivate(sub_id)


@router.get("/stats")
def management_stats(service: SubscriptionRenewalService = Depends(_service)):
    return service.get_management_stats()


@router.get("/upcoming-renewals")
def preview_upcoming(
    days: int = Query(default=7, ge=1, le=365),
    service: SubscriptionRenewalService = Depends(_service),
):
    preview = service.preview_upcoming_renewals(days=days)
    preview["auto_renewals"] = [SubscriptionResponse.model_validate(s) for s in preview["auto_renewals"]]
    preview["manual_renewals"] = [SubscriptionResponse.model_validate(s) for s in preview["manual_renewals"]]
    return preview
