"""
Emergency API Endpoints
Detection submissions, manual triggers and emergency contact lists
"""
from fastapi import APIRouter, Depends, status

from tourist_safety.core.dependencies import get_emergency_service, get_contact_service
from tourist_safety.models.schemas.emergency_schemas import (
    DetectionRequest, DetectionResponse,
    ManualTriggerRequest, ManualTriggerResponse,
    ContactListUpdate, ContactListResponse, EmergencyContactResponse
)
from tourist_safety.services.contact_service import ContactService
from tourist_safety.services.emergency_service import EmergencyService

router = APIRouter()


@router.post("/detect", response_model=DetectionResponse)
async def detect_emergency(
    request: DetectionRequest,
    service: EmergencyService = Depends(get_emergency_service)
):
    """
    Analyze a sensor snapshot and location, and respond by severity tier

    - **CRITICAL**: alert + contacts + external emergency service
    - **HIGH**: alert + contacts
    - **MODERATE**: logged only
    - **LOW / MINIMAL**: no action
    """
    return await service.detect(request)


@router.post("/trigger", response_model=ManualTriggerResponse, status_code=status.HTTP_201_CREATED)
async def trigger_emergency(
    request: ManualTriggerRequest,
    service: EmergencyService = Depends(get_emergency_service)
):
    """
    Manual SOS / panic button. Always raises a CRITICAL alert.
    """
    return await service.trigger(request)


@router.put("/contacts/{subject_id}", response_model=ContactListResponse)
async def replace_contacts(
    subject_id: str,
    update: ContactListUpdate,
    service: ContactService = Depends(get_contact_service)
):
    """
    Replace a subject's emergency contact list (full replacement)
    """
    contacts = await service.replace_contacts(subject_id, update.contacts)
    return ContactListResponse(
        subject_id=subject_id,
        count=len(contacts),
        contacts=[EmergencyContactResponse.model_validate(c) for c in contacts]
    )


@router.get("/contacts/{subject_id}", response_model=ContactListResponse)
async def list_contacts(
    subject_id: str,
    service: ContactService = Depends(get_contact_service)
):
    """Emergency contacts in the order they are notified"""
    contacts = await service.list_contacts(subject_id)
    return ContactListResponse(
        subject_id=subject_id,
        count=len(contacts),
        contacts=[EmergencyContactResponse.model_validate(c) for c in contacts]
    )
