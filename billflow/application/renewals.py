"""
Renewal / expiration processing.

State transitions:
  active (auto, due or overdue)    -> active     next date advanced from the stored next_billing_date
  active (manual, next < today)    -> cancelled  no payment
  manual (explicit renew)          -> active     anchored to next_billing_date if still ahead, else today
  cancelled (reactivate)           -> active     fresh cycle starting today

Every transition that bills inserts one succeeded payment, recomputes the
payment's summary month and commits. Notifications go out after the commit
and cannot undo it.
"""
import logging
from datetime import date, timedelta

from sqlalchemy import func
from sqlalchemy.orm import Session

from billflow.application.errors import NotFoundError, SubscriptionStateError
from billflow.application.monthly_summary import MonthlyCategorySummaryService
from billflow.application.notifications import notify_quietly
from billflow.domain.billing_cycle import advance
from billflow.domain.subscription import (
    NOTE_AUTO_RENEWAL,
    NOTE_MANUAL_RENEWAL,
    NOTE_REACTIVATION,
    PAYMENT_SUCCEEDED,
    RENEWAL_AUTO,
    RENEWAL_MANUAL,
    SUBSCRIPTION_STATUS_ACTIVE,
    SUBSCRIPTION_STATUS_CANCELLED,
    SUBSCRIPTION_STATUS_TRIAL,
)
from billflow.infrastructure.db.models import PaymentRecord, SubscriptionModel

logger = logging.getLogger(__name__)

UPCOMING_WINDOW_DAYS = 7


class SubscriptionRenewalService:
    def __init__(
        self,
        db: Session,
        notifier=None,
        summary: MonthlyCategorySummaryService | None = None,
    ):
        self.db = db
        self.notifier = notifier
        self.summary = summary or MonthlyCategorySummaryService(db)

    # ------------------------------------------------------------------
    # Single subscription
    # ------------------------------------------------------------------

    def renew(self, sub: SubscriptionModel, today: date, manual: bool = False) -> dict | None:
        """
        Advance one subscription by a cycle and bill it.

        Returns the renewal details, or None when the row could not be
        updated (renewal_failure is sent and nothing changes).
        """
        sub_id = sub.id
        old_next = sub.next_billing_date
        if manual:
            base = old_next if old_next is not None and old_next >= today else today
        else:
            base = old_next or today
        new_next = advance(base, sub.billing_cycle)

        updated = self.db.query(SubscriptionModel).filter(
            SubscriptionModel.id == sub_id,
        ).update({
            SubscriptionModel.last_billing_date: today,
            SubscriptionModel.next_billing_date: new_next,
            SubscriptionModel.status: SUBSCRIPTION_STATUS_ACTIVE,
        })
        if updated == 0:
            self.db.rollback()
            logger.warning("Renewal of subscription_id=%d updated no rows", sub_id)
            notify_quietly(self.notifier, sub_id, "renewal_failure")
            return None

        try:
            payment = PaymentRecord(
                subscription_id=sub_id,
                payment_date=today,
                amount_paid=sub.amount,
                currency=sub.currency,
                billing_period_start=old_next or today,
                billing_period_end=new_next,
                status=PAYMENT_SUCCEEDED,
                notes=NOTE_MANUAL_RENEWAL if manual else NOTE_AUTO_RENEWAL,
            )
            self.db.add(payment)
            self.db.flush()
            self.summary.on_payment_created(payment.id)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(
            "Renewed subscription_id=%d: next billing %s -> %s", sub_id, old_next, new_next
        )
        notify_quietly(self.notifier, sub_id, "renewal_success")
        return {
            "id": sub_id,
            "name": sub.name,
            "old_next_billing": old_next,
            "new_last_billing": today,
            "new_next_billing": new_next,
            "renewed_early": bool(manual and old_next is not None and old_next > today),
        }

    def manual_renew(self, subscription_id: int, today: date | None = None) -> dict:
        today = today or date.today()
        sub = self.db.get(SubscriptionModel, subscription_id)
        if sub is None:
            raise NotFoundError("Subscription", subscription_id)
        if sub.renewal_type != RENEWAL_MANUAL:
            raise SubscriptionStateError("Only manual renewal subscriptions can be renewed manually")

        result = self.renew(sub, today, manual=True)
        if result is None:
            raise SubscriptionStateError("Failed to update subscription")
        return result

    def reactivate(self, subscription_id: int, today: date | None = None) -> dict:
        today = today or date.today()
        sub = self.db.get(SubscriptionModel, subscription_id)
        if sub is None:
            raise NotFoundError("Subscription", subscription_id)
        if sub.status != SUBSCRIPTION_STATUS_CANCELLED:
            raise SubscriptionStateError("Only cancelled subscriptions can be reactivated")

        new_next = advance(today, sub.billing_cycle)
        try:
            sub.last_billing_date = today
            sub.next_billing_date = new_next
            sub.status = SUBSCRIPTION_STATUS_ACTIVE
            payment = PaymentRecord(
                subscription_id=sub.id,
                payment_date=today,
                amount_paid=sub.amount,
                currency=sub.currency,
                billing_period_start=today,
                billing_period_end=new_next,
                status=PAYMENT_SUCCEEDED,
                notes=NOTE_REACTIVATION,
            )
            self.db.add(payment)
            self.db.flush()
            self.summary.on_payment_created(payment.id)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info("Reactivated subscription_id=%d, next billing %s", sub.id, new_next)
        notify_quietly(self.notifier, sub.id, "subscription_change")
        return {
            "id": sub.id,
            "name": sub.name,
            "new_last_billing": today,
            "new_next_billing": new_next,
        }

    # ------------------------------------------------------------------
    # Batch scans
    # ------------------------------------------------------------------

    def process_auto_renewals(self, today: date | None = None) -> dict:
        today = today or date.today()
        due = self.db.query(SubscriptionModel).filter(
            SubscriptionModel.status == SUBSCRIPTION_STATUS_ACTIVE,
            SubscriptionModel.renewal_type == RENEWAL_AUTO,
            SubscriptionModel.next_billing_date <= today,
        ).order_by(SubscriptionModel.id).all()
        due_ids = [sub.id for sub in due]

        processed = 0
        errors = 0
        renewed = []
        for sub_id in due_ids:
            try:
                sub = self.db.get(SubscriptionModel, sub_id)
                if sub is None:
                    continue
                result = self.renew(sub, today)
                if result is None:
                    errors += 1
                    continue
                processed += 1
                renewed.append(result)
            except Exception:
                self.db.rollback()
                errors += 1
                logger.exception("Auto renewal failed for subscription_id=%d", sub_id)
                notify_quietly(self.notifier, sub_id, "renewal_failure")

        logger.info("Auto renewals: %d processed, %d errors", processed, errors)
        return {
            "message": f"Auto renewal complete: {processed} processed, {errors} errors",
            "processed": processed,
            "errors": errors,
            "renewed_subscriptions": renewed,
        }

    def process_expired_subscriptions(self, today: date | None = None) -> dict:
        today = today or date.today()
        expired = self.db.query(SubscriptionModel).filter(
            SubscriptionModel.status == SUBSCRIPTION_STATUS_ACTIVE,
            SubscriptionModel.renewal_type == RENEWAL_MANUAL,
            SubscriptionModel.next_billing_date < today,
        ).order_by(SubscriptionModel.id).all()
        expired_ids = [sub.id for sub in expired]

        processed = 0
        errors = 0
        cancelled = []
        for sub_id in expired_ids:
            try:
                sub = self.db.get(SubscriptionModel, sub_id)
                if sub is None:
                    continue
                sub.status = SUBSCRIPTION_STATUS_CANCELLED
                self.db.commit()
                processed += 1
                cancelled.append({
                    "id": sub.id,
                    "name": sub.name,
                    "expired_date": sub.next_billing_date,
                })
            except Exception:
                self.db.rollback()
                errors += 1
                logger.exception("Expiration failed for subscription_id=%d", sub_id)

        logger.info("Expired subscriptions: %d processed, %d errors", processed, errors)
        return {
            "message": f"Expiration check complete: {processed} processed, {errors} errors",
            "processed": processed,
            "errors": errors,
            "expired_subscriptions": cancelled,
        }

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    def get_management_stats(self, today: date | None = None) -> dict:
        today = today or date.today()
        counts = {
            (status, renewal_type): n
            for status, renewal_type, n in self.db.query(
                SubscriptionModel.status,
                SubscriptionModel.renewal_type,
                func.count(SubscriptionModel.id),
            ).group_by(SubscriptionModel.status, SubscriptionModel.renewal_type).all()
        }
        active_auto = counts.get((SUBSCRIPTION_STATUS_ACTIVE, RENEWAL_AUTO), 0)
        active_manual = counts.get((SUBSCRIPTION_STATUS_ACTIVE, RENEWAL_MANUAL), 0)
        cancelled = sum(n for (status, _), n in counts.items() if status == SUBSCRIPTION_STATUS_CANCELLED)
        trial = sum(n for (status, _), n in counts.items() if status == SUBSCRIPTION_STATUS_TRIAL)
        total = sum(counts.values())
        active = active_auto + active_manual

        upcoming = self.db.query(func.count(SubscriptionModel.id)).filter(
            SubscriptionModel.status == SUBSCRIPTION_STATUS_ACTIVE,
            SubscriptionModel.next_billing_date >= today,
            SubscriptionModel.next_billing_date <= today + timedelta(days=UPCOMING_WINDOW_DAYS),
        ).scalar()
        overdue = self.db.query(func.count(SubscriptionModel.id)).filter(
            SubscriptionModel.status == SUBSCRIPTION_STATUS_ACTIVE,
            SubscriptionModel.renewal_type == RENEWAL_MANUAL,
            SubscriptionModel.next_billing_date < today,
        ).scalar()

        return {
            "subscription_counts": {
                "active_auto": active_auto,
                "active_manual": active_manual,
                "cancelled": cancelled,
                "trial": trial,
                "total": total,
            },
            "upcoming_renewals": upcoming or 0,
            "overdue_subscriptions": overdue or 0,
            "auto_renewal_rate": round(active_auto / active * 100, 2) if active else 0.0,
            "active_rate": round(active / total * 100, 2) if total else 0.0,
        }

    def preview_upcoming_renewals(self, days: int = 7, today: date | None = None) -> dict:
        today = today or date.today()
        end = today + timedelta(days=days)
        subs = self.db.query(SubscriptionModel).filter(
            SubscriptionModel.status == SUBSCRIPTION_STATUS_ACTIVE,
            SubscriptionModel.next_billing_date >= today,
            SubscriptionModel.next_billing_date <= end,
        ).order_by(SubscriptionModel.next_billing_date).all()

        auto = [s for s in subs if s.renewal_type == RENEWAL_AUTO]
        manual = [s for s in subs if s.renewal_type == RENEWAL_MANUAL]
        return {
            "period": {"start": today, "end": end, "days": days},
            "auto_renewals": auto,
            "manual_renewals": manual,
            "total": len(subs),
        }
