"""
Vendor onboarding.

An application moves from ``pending`` to ``approved`` or ``rejected`` exactly
once, by an admin. Approval promotes the applicant's user record to the
``vendor`` role; the new role takes effect in the next token they are issued.
"""
from typing import List, Optional

import structlog
from pymongo import DESCENDING, ReturnDocument
from pymongo.database import Database

from auth import Identity
from database import create_document, now, serialize_doc, to_object_id
from errors import InvalidTransition, NotFound, ValidationError
from schemas import VendorApplication

logger = structlog.get_logger(__name__)

COLLECTION = "vendor_application"


def submit_application(db: Database, application: VendorApplication) -> str:
    if not application.user_id or not application.email or not application.business_name.strip():
        raise ValidationError("Missing required fields")
    if pending_application_for(db, application.user_id):
        raise ValidationError("You already have a pending vendor application")
    doc = application.model_dump(mode="json")
    doc.update(status="pending", rejection_reason=None, reviewed_by=None, submitted_at=now())
    app_id = create_document(db, COLLECTION, doc)
    logger.info("vendor_application_submitted", application_id=app_id, user_id=application.user_id)
    return app_id


def list_applications(db: Database, status: Optional[str] = None) -> List[dict]:
    filt = {"status": status} if status else {}
    docs = db[COLLECTION].find(filt).sort("submitted_at", DESCENDING)
    return [serialize_doc(d) for d in docs]


def pending_application_for(db: Database, user_id: str) -> Optional[dict]:
    doc = db[COLLECTION].find_one({"user_id": user_id, "status": "pending"})
    return serialize_doc(doc) if doc else None


def _review(db: Database, application_id: str, update: dict) -> dict:
    oid = to_object_id(application_id, "Application")
    updated = db[COLLECTION].find_one_and_update(
        {"_id": oid, "status": "pending"},
        {"$set": {**update, "updated_at": now()}},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        if db[COLLECTION].find_one({"_id": oid}) is None:
            raise NotFound("Application not found")
        raise InvalidTransition("Application has already been reviewed")
    return updated


def approve_application(db: Database, application_id: str, admin: Identity) -> dict:
    app = _review(db, application_id, {"status": "approved", "reviewed_by": admin.uid})
    user_oid = to_object_id(app["user_id"], "User")
    db["user"].update_one({"_id": user_oid}, {"$set": {
        "role": "vendor",
        "vendor_application_id": application_id,
        "business_name": app.get("business_name"),
        "business_category": app.get("business_category"),
        "contact_phone": app.get("contact_phone"),
        "business_address": app.get("business_address"),
        "vendor_approved_at": now(),
        "updated_at": now(),
    }})
    logger.info("vendor_application_approved", application_id=application_id, admin=admin.uid)
    return serialize_doc(app)


def reject_application(db: Database, application_id: str, admin: Identity, reason: Optional[str] = None) -> dict:
    app = _review(db, application_id, {
        "status": "rejected",
        "reviewed_by": admin.uid,
        "rejection_reason": reason or "No reason provided",
    })
    logger.info("vendor_application_rejected", application_id=application_id, admin=admin.uid)
    return serialize_doc(app)
