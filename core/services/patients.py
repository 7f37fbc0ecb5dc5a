from functools import partial

from django.db import transaction
from django.utils import timezone

from core.exceptions import NotFoundError, ValidationError
from core.models import DailyVisit, DentalRecord, Patient
from core.services.audit import log_action
from core.services.notifications import announce_patient

DENTAL_TEXT_FIELDS = (
    'complaint', 'history_of_present_complaint', 'past_dental_history',
    'extra_oral_examination', 'intra_oral_examination', 'investigations',
    'xray_findings', 'treatment_done',
)
DENTAL_LIST_FIELDS = ('provisional_diagnosis', 'treatment_plan')


def find_patient_by_contact(identifier):
    """Phone number or email; an '@' decides which."""
    identifier = (identifier or '').strip()
    if not identifier:
        raise ValidationError('Phone number or email is required.')
    if '@' in identifier:
        return Patient.objects.filter(email__iexact=identifier).first()
    return Patient.objects.filter(phone_number=identifier).first()


def record_returning_visit(identifier):
    patient = find_patient_by_contact(identifier)
    if patient is None:
        raise NotFoundError('Patient not found. Please register as a new patient.')
    with transaction.atomic():
        visit = DailyVisit.objects.create(patient=patient)
        log_action(user=None, action='patient_check_in', object_type='patient', object_id=patient.id,
                   detail={'visitId': visit.id})
        transaction.on_commit(partial(
            announce_patient, patient, 'returning_patient',
            check_in_time=timezone.localtime(visit.check_in_time).strftime('%Y-%m-%d %H:%M'),
        ))
    return visit


def _get_patient(patient_id):
    patient = Patient.objects.filter(id=patient_id).first()
    if patient is None:
        raise NotFoundError('Patient not found.')
    return patient


def create_dental_record(patient_id, doctor, data):
    patient = _get_patient(patient_id)
    fields = {k: (data.get(k) or '').strip() for k in DENTAL_TEXT_FIELDS}
    for k in DENTAL_LIST_FIELDS:
        v = data.get(k) or []
        if not isinstance(v, (list, tuple)):
            raise ValidationError(f'{k} must be a list')
        fields[k] = [str(x).strip() for x in v if str(x).strip()]
    if not any(fields.values()):
        raise ValidationError('A dental record needs at least one finding.')
    with transaction.atomic():
        record = DentalRecord.objects.create(
            patient=patient,
            doctor=doctor if getattr(doctor, 'pk', None) else None,
            **fields,
        )
        log_action(user=doctor, action='dental_record_create', object_type='patient', object_id=patient.id,
                   detail={'recordId': record.id})
    return record


def list_dental_records(patient_id):
    patient = _get_patient(patient_id)
    return list(patient.dental_records.select_related('doctor').order_by('-created_at', '-id'))


def get_dental_record(record_id, patient_id=None):
    qs = DentalRecord.objects.select_related('doctor')
    if patient_id is not None:
        qs = qs.filter(patient_id=patient_id)
    record = qs.filter(id=record_id).first()
    if record is None:
        raise NotFoundError('Dental record not found.')
    return record


def update_dental_record(record_id, data, *, actor=None):
    """Change findings on a record; the patient and doctor stay as recorded."""
    fields = {}
    for k in DENTAL_TEXT_FIELDS:
        if k in data:
            fields[k] = (data.get(k) or '').strip()
    for k in DENTAL_LIST_FIELDS:
        if k in data:
            v = data.get(k) or []
            if not isinstance(v, (list, tuple)):
                raise ValidationError(f'{k} must be a list')
            fields[k] = [str(x).strip() for x in v if str(x).strip()]
    if not fields:
        raise ValidationError('No dental record fields to update.')
    with transaction.atomic():
        record = DentalRecord.objects.select_for_update().filter(id=record_id).first()
        if record is None:
            raise NotFoundError('Dental record not found.')
        for k, v in fields.items():
            setattr(record, k, v)
        if not any(getattr(record, k) for k in DENTAL_TEXT_FIELDS + DENTAL_LIST_FIELDS):
            raise ValidationError('A dental record needs at least one finding.')
        record.save()
        log_action(user=actor, action='dental_record_update', object_type='patient', object_id=record.patient_id,
                   detail={'recordId': record.id, 'fields': sorted(fields)})
    return get_dental_record(record.id)


def delete_dental_record(record_id, *, actor=None):
    with transaction.atomic():
        record = DentalRecord.objects.filter(id=record_id).first()
        if record is None:
            raise NotFoundError('Dental record not found.')
        patient_id = record.patient_id
        record.delete()
        log_action(user=actor, action='dental_record_delete', object_type='patient', object_id=patient_id,
                   detail={'recordId': record_id})
