"""
Medical-personnel API: dashboard, patients, appointments, pregnancy
record notes and medications, analytics.

Every route is scoped to the authenticated personnel user. Handlers return
`{"success": True, "data": ...}`; failures surface as HTTPException and are
rendered as `{"message": ...}` by the app's exception handlers.
"""

import logging
import os
from datetime import datetime
from typing import Optional

from bson import ObjectId
from dotenv import load_dotenv
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query
from pymongo.database import Database

from auth import MOTHER, require_medical_personnel
from models.appointment_model import (
    ACTIVE_STATUSES,
    AppointmentCreate,
    AppointmentStatus,
    AppointmentUpdate,
    can_transition,
)
from models.models import (
    CONTACT_FIELDS,
    EXTENDED_PROFILE_FIELDS,
    PRESCRIBER_FIELDS,
    PROFILE_FIELDS,
    MedicationRequest,
    NoteRequest,
)
from mongo import APPOINTMENTS, PREGNANCY_RECORDS, USERS, get_db
from notifications import APPOINTMENT_UPDATED, NEW_APPOINTMENT, NotificationHub, get_notifier
from queries import (
    as_object_id,
    day_bounds,
    months_ago,
    parse_day,
    populate,
    populate_one,
    populate_prescribers,
    serialize,
)

load_dotenv()

# Open product question: should only personnel linked to the patient write to the record?
REQUIRE_CARE_LINK_FOR_RECORD_WRITES = os.getenv("REQUIRE_CARE_LINK_FOR_RECORD_WRITES", "false").lower() in ("1", "true", "yes")

UPCOMING_LIMIT = 10
ANALYTICS_MONTHS = 6

router = APIRouter(prefix="/api/medical", tags=["medical"])


def _has_care_link(db: Database, personnel_id: ObjectId, patient_id: Optional[ObjectId]) -> bool:
    if patient_id is None:
        return False
    link = db[APPOINTMENTS].find_one({"motherId": patient_id, "medicalPersonnelId": personnel_id})
    return link is not None


def _find_pregnancy_record(db: Database, user: dict, patient_id: Optional[ObjectId]) -> dict:
    if REQUIRE_CARE_LINK_FOR_RECORD_WRITES and not _has_care_link(db, user["_id"], patient_id):
        raise HTTPException(status_code=403, detail="Not authorized to modify this patient's record")

    record = db[PREGNANCY_RECORDS].find_one({"motherId": patient_id}) if patient_id else None
    if not record:
        raise HTTPException(status_code=404, detail="Pregnancy record not found")
    return record


@router.get("/dashboard", operation_id="get_dashboard")
def get_dashboard(
    user: dict = Depends(require_medical_personnel),
    db: Database = Depends(get_db),
):
    try:
        now = datetime.now()
        start, end = day_bounds(now.date())

        today_appointments = list(db[APPOINTMENTS].find({
            "medicalPersonnelId": user["_id"],
            "appointmentDate": {"$gte": start, "$lte": end},
        }))
        populate(db, today_appointments, "motherId", PROFILE_FIELDS)

        upcoming_appointments = list(
            db[APPOINTMENTS].find({
                "medicalPersonnelId": user["_id"],
                "status": {"$in": ACTIVE_STATUSES},
                "appointmentDate": {"$gte": now},
            })
            .sort("appointmentDate", 1)
            .limit(UPCOMING_LIMIT)
        )
        populate(db, upcoming_appointments, "motherId", CONTACT_FIELDS)

        total_patients = db[APPOINTMENTS].distinct("motherId", {"medicalPersonnelId": user["_id"]})

        return {
            "success": True,
            "data": serialize({
                "todayAppointments": today_appointments,
                "upcomingAppointments": upcoming_appointments,
                "totalPatients": len(total_patients),
            }),
        }
    except HTTPException:
        raise
    except Exception as e:
        logging.error(f"Error in get_dashboard: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to load dashboard data")


@router.get("/patients/{patient_id}", operation_id="get_patient_details")
def get_patient_details(
    patient_id: str,
    user: dict = Depends(require_medical_personnel),
    db: Database = Depends(get_db),
):
    try:
        mother_id = as_object_id(patient_id)

        # Access requires at least one appointment with this patient
        if not _has_care_link(db, user["_id"], mother_id):
            raise HTTPException(status_code=403, detail="Not authorized to view this patient's details")

        patient = db[USERS].find_one({"_id": mother_id, "role": MOTHER}, {"password": 0})
        if not patient:
            raise HTTPException(status_code=404, detail="Patient not found")

        pregnancy_record = populate_prescribers(
            db,
            db[PREGNANCY_RECORDS].find_one({"motherId": mother_id}),
            PRESCRIBER_FIELDS,
        )

        appointments = list(
            db[APPOINTMENTS]
            .find({"motherId": mother_id, "medicalPersonnelId": user["_id"]})
            .sort([("appointmentDate", -1), ("appointmentTime", -1)])
        )

        patient_data = {
            **patient,
            "pregnancyRecord": pregnancy_record,
            "appointments": appointments,
        }
        return {"success": True, "data": serialize(patient_data)}
    except HTTPException:
        raise
    except Exception as e:
        logging.error(f"Error in get_patient_details: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to get patient details")


@router.get("/patients", operation_id="get_patients")
def get_patients(
    user: dict = Depends(require_medical_personnel),
    db: Database = Depends(get_db),
):
    try:
        appointments = list(
            db[APPOINTMENTS]
            .find({"medicalPersonnelId": user["_id"]})
            .sort("createdAt", -1)
        )
        populate(db, appointments, "motherId", EXTENDED_PROFILE_FIELDS)

        # First appointment seen for a patient decides which snapshot is kept
        patients = {}
        for appointment in appointments:
            mother = appointment.get("motherId")
            if mother and mother["_id"] not in patients:
                patients[mother["_id"]] = mother

        return {"success": True, "data": serialize(list(patients.values()))}
    except HTTPException:
        raise
    except Exception as e:
        logging.error(f"Error in get_patients: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to get patients")


@router.get("/appointments", operation_id="get_appointments")
def get_appointments(
    status: Optional[str] = None,
    day: Optional[str] = Query(None, alias="date"),
    user: dict = Depends(require_medical_personnel),
    db: Database = Depends(get_db),
):
    try:
        filter_q = {"medicalPersonnelId": user["_id"]}
        if status:
            filter_q["status"] = status
        if day:
            start, end = day_bounds(parse_day(day))
            filter_q["appointmentDate"] = {"$gte": start, "$lte": end}

        appointments = list(
            db[APPOINTMENTS]
            .find(filter_q)
            .sort([("appointmentDate", 1), ("appointmentTime", 1)])
        )
        populate(db, appointments, "motherId", PROFILE_FIELDS)

        return {"success": True, "data": serialize(appointments)}
    except HTTPException:
        raise
    except Exception as e:
        logging.error(f"Error in get_appointments: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to get appointments")


@router.post("/appointments", status_code=201, operation_id="create_appointment")
def create_appointment(
    data: AppointmentCreate,
    background_tasks: BackgroundTasks,
    user: dict = Depends(require_medical_personnel),
    db: Database = Depends(get_db),
    notifier: NotificationHub = Depends(get_notifier),
):
    try:
        mother_id = as_object_id(data.motherId)
        mother = db[USERS].find_one({"_id": mother_id}) if mother_id else None
        if not mother or mother.get("role") != MOTHER:
            raise HTTPException(status_code=404, detail="Patient not found")

        now = datetime.now()
        appointment_data = {
            "motherId": mother_id,
            "medicalPersonnelId": user["_id"],
            "appointmentDate": data.appointmentDate,
            "appointmentTime": data.appointmentTime,
            "type": data.type,
            # Any status sent by the caller is ignored
            "status": AppointmentStatus.SCHEDULED.value,
            "createdAt": now,
            "updatedAt": now,
        }
        if data.notes is not None:
            appointment_data["notes"] = data.notes

        result = db[APPOINTMENTS].insert_one(appointment_data)

        appointment = populate_one(
            db,
            db[APPOINTMENTS].find_one({"_id": result.inserted_id}),
            "motherId",
            PROFILE_FIELDS,
        )
        payload = serialize(appointment)

        background_tasks.add_task(notifier.emit, str(mother_id), NEW_APPOINTMENT, payload)

        return {"success": True, "data": payload}
    except HTTPException:
        raise
    except Exception as e:
        logging.error(f"Error in create_appointment: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to create appointment")


@router.patch("/appointments/{appointment_id}", operation_id="update_appointment")
def update_appointment(
    appointment_id: str,
    data: AppointmentUpdate,
    background_tasks: BackgroundTasks,
    user: dict = Depends(require_medical_personnel),
    db: Database = Depends(get_db),
    notifier: NotificationHub = Depends(get_notifier),
):
    try:
        object_id = as_object_id(appointment_id)

        # Ownership is part of the lookup, so a foreign appointment is simply not found
        appointment = db[APPOINTMENTS].find_one({
            "_id": object_id,
            "medicalPersonnelId": user["_id"],
        }) if object_id else None
        if not appointment:
            raise HTTPException(status_code=404, detail="Appointment not found")

        # Empty values mean "no change", including notes=""
        changes = {}
        if data.status:
            current = appointment.get("status")
            if not can_transition(current, data.status):
                raise HTTPException(
                    status_code=409,
                    detail=f"Cannot change appointment status from {current} to {data.status.value}",
                )
            changes["status"] = data.status.value
        if data.notes:
            changes["notes"] = data.notes
        if data.meetingLink:
            changes["meetingLink"] = data.meetingLink

        if changes:
            changes["updatedAt"] = datetime.now()
            db[APPOINTMENTS].update_one({"_id": object_id}, {"$set": changes})

        updated = populate_one(
            db,
            db[APPOINTMENTS].find_one({"_id": object_id}),
            "motherId",
            CONTACT_FIELDS,
        )
        payload = serialize(updated)

        background_tasks.add_task(notifier.emit, str(appointment["motherId"]), APPOINTMENT_UPDATED, payload)

        return {"success": True, "data": payload}
    except HTTPException:
        raise
    except Exception as e:
        logging.error(f"Error in update_appointment: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to update appointment")


@router.post("/patients/{patient_id}/notes", operation_id="add_patient_notes")
def add_patient_notes(
    patient_id: str,
    data: NoteRequest,
    user: dict = Depends(require_medical_personnel),
    db: Database = Depends(get_db),
):
    try:
        record = _find_pregnancy_record(db, user, as_object_id(patient_id))

        now = datetime.now()
        note = {
            "_id": ObjectId(),
            "content": data.content,
            "addedBy": user["_id"],
            "date": now,
        }
        db[PREGNANCY_RECORDS].update_one(
            {"_id": record["_id"]},
            {"$push": {"notes": note}, "$set": {"updatedAt": now}},
        )

        updated = db[PREGNANCY_RECORDS].find_one({"_id": record["_id"]})
        return {"success": True, "data": serialize(updated)}
    except HTTPException:
        raise
    except Exception as e:
        logging.error(f"Error in add_patient_notes: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to add notes")


@router.post("/patients/{patient_id}/medications", operation_id="add_medication")
def add_medication(
    patient_id: str,
    data: MedicationRequest,
    user: dict = Depends(require_medical_personnel),
    db: Database = Depends(get_db),
):
    try:
        record = _find_pregnancy_record(db, user, as_object_id(patient_id))

        medication = {
            "_id": ObjectId(),
            "name": data.name,
            "dosage": data.dosage,
            "frequency": data.frequency,
            "prescribedBy": user["_id"],
            "startDate": data.startDate,
            "endDate": data.endDate,
        }
        db[PREGNANCY_RECORDS].update_one(
            {"_id": record["_id"]},
            {"$push": {"medications": medication}, "$set": {"updatedAt": datetime.now()}},
        )

        updated = populate_prescribers(
            db,
            db[PREGNANCY_RECORDS].find_one({"_id": record["_id"]}),
            PRESCRIBER_FIELDS,
        )
        return {"success": True, "data": serialize(updated)}
    except HTTPException:
        raise
    except Exception as e:
        logging.error(f"Error in add_medication: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to add medication")


@router.get("/analytics", operation_id="get_analytics")
def get_analytics(
    user: dict = Depends(require_medical_personnel),
    db: Database = Depends(get_db),
):
    try:
        now = datetime.now()
        appointments = db[APPOINTMENTS]

        total_appointments = appointments.count_documents({"medicalPersonnelId": user["_id"]})
        completed_appointments = appointments.count_documents({
            "medicalPersonnelId": user["_id"],
            "status": AppointmentStatus.COMPLETED.value,
        })
        upcoming_appointments = appointments.count_documents({
            "medicalPersonnelId": user["_id"],
            "status": {"$in": ACTIVE_STATUSES},
            "appointmentDate": {"$gte": now},
        })
        total_patients = appointments.distinct("motherId", {"medicalPersonnelId": user["_id"]})

        # Only months with at least one appointment come back from $group
        appointments_by_month = list(appointments.aggregate([
            {
                "$match": {
                    "medicalPersonnelId": user["_id"],
                    "appointmentDate": {"$gte": months_ago(now, ANALYTICS_MONTHS)},
                }
            },
            {
                "$group": {
                    "_id": {
                        "month": {"$month": "$appointmentDate"},
                        "year": {"$year": "$appointmentDate"},
                    },
                    "count": {"$sum": 1},
                }
            },
            {"$sort": {"_id.year": 1, "_id.month": 1}},
        ]))

        return {
            "success": True,
            "data": serialize({
                "totalAppointments": total_appointments,
                "completedAppointments": completed_appointments,
                "upcomingAppointments": upcoming_appointments,
                "totalPatients": len(total_patients),
                "appointmentsByMonth": appointments_by_month,
            }),
        }
    except HTTPException:
        raise
    except Exception as e:
        logging.error(f"Error in get_analytics: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to get analytics")
