"""
Family hierarchy management.

A family is two levels deep: a head row holding the shared phone, email,
address and HMO, and any number of member rows pointing at it.  Members
take a copy of the head's address and HMO when they are created; later
changes on the head are pushed down explicitly by ``update_patient``.
"""
from __future__ import annotations

import copy
import logging
from dataclasses import dataclass
from functools import partial
from typing import Any, Iterable, List, Mapping, Optional, Tuple, Union

from django.db import IntegrityError, transaction
from django.utils import timezone

from core.exceptions import ConflictError, NotFoundError, ValidationError
from core.models import Patient
from core.services.audit import log_action
from core.services.notifications import announce_patient

logger = logging.getLogger(__name__)

STRUCTURAL_FIELDS = ('family', 'family_id', 'familyId', 'is_family_head', 'isFamilyHead')
CONTACT_FIELDS = ('phone_number', 'email')
SHARED_FIELDS = ('address', 'hmo')
UPDATABLE_FIELDS = ('name', 'sex', 'date_of_birth', 'phone_number', 'email', 'address', 'hmo')


@dataclass(frozen=True)
class FamilyHead:
    patient_id: int
    member_ids: Tuple[int, ...] = ()


@dataclass(frozen=True)
class FamilyMember:
    patient_id: int
    head_id: int


FamilyRole = Union[FamilyHead, FamilyMember]


def family_role(patient: Patient) -> FamilyRole:
    """Classify a stored patient, refusing rows that break the family shape."""
    if patient.is_family_head:
        if patient.family_id is not None:
            raise ValidationError(f'patient {patient.id} is a family head but belongs to family {patient.family_id}')
        member_ids = tuple(
            Patient.objects.filter(family_id=patient.id).order_by('id').values_list('id', flat=True)
        )
        return FamilyHead(patient_id=patient.id, member_ids=member_ids)
    if patient.family_id is None:
        raise ValidationError(f'patient {patient.id} is neither a family head nor attached to one')
    if not Patient.objects.filter(id=patient.family_id, is_family_head=True).exists():
        raise ValidationError(f'patient {patient.id} points at {patient.family_id}, which is not a family head')
    return FamilyMember(patient_id=patient.id, head_id=patient.family_id)


def _require(data: Mapping[str, Any], keys: Iterable[str], label: str = '') -> None:
    missing = [k for k in keys if not str(data.get(k) or '').strip()]
    if missing:
        prefix = f'{label}: ' if label else ''
        raise ValidationError(f"{prefix}missing required field(s): {', '.join(missing)}")


def _text(v) -> Optional[str]:
    v = (v or '').strip() if isinstance(v, str) else v
    return v or None


def _ensure_contact_available(*, phone_number=None, email=None, exclude_id=None) -> None:
    qs = Patient.objects.all()
    if exclude_id is not None:
        qs = qs.exclude(id=exclude_id)
    if phone_number and qs.filter(phone_number=phone_number).exists():
        raise ConflictError('A patient with this phone number already exists.')
    if email and qs.filter(email__iexact=email).exists():
        raise ConflictError('A patient with this email already exists.')


def create_family_head(data: Mapping[str, Any], *, actor=None, announce: bool = True) -> Patient:
    """Register a head (a standalone guest is a head without members)."""
    _require(data, ('name', 'sex', 'phone_number'))
    phone = _text(data.get('phone_number'))
    email = _text(data.get('email'))
    _ensure_contact_available(phone_number=phone, email=email)
    try:
        with transaction.atomic():
            head = Patient.objects.create(
                family=None,
                is_family_head=True,
                name=data['name'].strip(),
                sex=data['sex'].strip(),
                date_of_birth=data.get('date_of_birth'),
                phone_number=phone,
                email=email,
                address=_text(data.get('address')),
                hmo=copy.deepcopy(data.get('hmo')) or None,
            )
            log_action(user=actor, action='patient_create', object_type='patient', object_id=head.id,
                       detail={'role': 'head'})
    except IntegrityError as exc:
        raise ConflictError('A patient with this phone number or email already exists.') from exc
    logger.info('registered family head %s', head.id)
    if announce:
        transaction.on_commit(partial(announce_patient, head, 'new_patient'))
    return head


def add_family_member(head_id: int, data: Mapping[str, Any], *, actor=None) -> Patient:
    with transaction.atomic():
        # lock the head so a concurrent update cannot hand us a stale snapshot
        head = Patient.objects.select_for_update().filter(id=head_id, is_family_head=True).first()
        if head is None:
            raise NotFoundError('Family head not found or the specified patient is not a family head.')
        _require(data, ('name', 'sex'))
        member = Patient.objects.create(
            family=head,
            is_family_head=False,
            name=data['name'].strip(),
            sex=data['sex'].strip(),
            date_of_birth=data.get('date_of_birth'),
            phone_number=None,
            email=None,
            address=head.address,
            hmo=copy.deepcopy(head.hmo),
        )
        log_action(user=actor, action='patient_create', object_type='patient', object_id=member.id,
                   detail={'role': 'member', 'headId': head.id})
    logger.info('added member %s to family %s', member.id, head.id)
    return member


def create_family_unit(head_data: Mapping[str, Any], members: Iterable[Mapping[str, Any]], *, actor=None) -> Patient:
    """Create a head and its members as one unit; any failure leaves nothing behind."""
    members = list(members or [])
    if not members:
        raise ValidationError('At least one family member must be provided.')
    _require(head_data, ('name', 'sex', 'phone_number'), label='head')
    for i, m in enumerate(members):
        _require(m, ('name', 'sex'), label=f'members[{i}]')

    with transaction.atomic():
        head = create_family_head(head_data, actor=actor, announce=False)
        for m in members:
            add_family_member(head.id, m, actor=actor)
        transaction.on_commit(partial(announce_patient, head, 'new_patient', member_count=len(members)))
    logger.info('registered family %s with %d member(s)', head.id, len(members))
    return get_family(head.id)


def update_patient(patient_id: int, changes: Mapping[str, Any], *, actor=None) -> Patient:
    changes = dict(changes)
    if any(k in changes for k in STRUCTURAL_FIELDS):
        raise ValidationError('Cannot change family structure via this method.')
    unknown = sorted(set(changes) - set(UPDATABLE_FIELDS))
    if unknown:
        raise ValidationError(f"unknown field(s): {', '.join(unknown)}")
    for k in ('name', 'sex'):
        if k in changes and not _text(changes[k]):
            raise ValidationError(f'{k} cannot be empty')
    for k in ('name', 'sex', 'phone_number', 'email', 'address'):
        if k in changes:
            changes[k] = _text(changes[k])

    try:
        with transaction.atomic():
            patient = Patient.objects.select_for_update().filter(id=patient_id).first()
            if patient is None:
                raise NotFoundError('Patient not found.')
            role = family_role(patient)

            if isinstance(role, FamilyMember):
                if any(changes.get(k) for k in CONTACT_FIELDS):
                    raise ValidationError('Family members share the phone number and email of their family head.')
                for k in CONTACT_FIELDS:
                    changes.pop(k, None)
            else:
                if 'phone_number' in changes and not changes['phone_number']:
                    raise ValidationError('A family head must keep a phone number.')
                _ensure_contact_available(
                    phone_number=changes.get('phone_number'),
                    email=changes.get('email'),
                    exclude_id=patient.id,
                )

            for k, v in changes.items():
                setattr(patient, k, v)
            patient.save()

            propagated = 0
            shared = {k: changes[k] for k in SHARED_FIELDS if k in changes}
            if isinstance(role, FamilyHead) and shared and role.member_ids:
                propagated = Patient.objects.filter(family_id=patient.id, is_family_head=False).update(
                    updated_at=timezone.now(), **shared
                )
            log_action(user=actor, action='patient_update', object_type='patient', object_id=patient.id,
                       detail={'fields': sorted(changes), 'propagated': propagated})
    except IntegrityError as exc:
        raise ConflictError('A patient with this phone number or email already exists.') from exc
    if propagated:
        logger.info('patient %s updated, %s pushed to %d member(s)', patient.id, sorted(shared), propagated)
    return patient


def delete_patient(patient_id: int, *, actor=None) -> List[int]:
    """Delete a patient and return the ids of members promoted to heads."""
    with transaction.atomic():
        patient = Patient.objects.select_for_update().filter(id=patient_id).first()
        if patient is None:
            raise NotFoundError('Patient not found.')
        orphan_ids: List[int] = []
        if patient.is_family_head:
            orphan_ids = list(patient.members.order_by('id').values_list('id', flat=True))
        patient.delete()
        if orphan_ids:
            Patient.objects.filter(id__in=orphan_ids).update(is_family_head=True, updated_at=timezone.now())
        log_action(user=actor, action='patient_delete', object_type='patient', object_id=patient_id,
                   detail={'promoted': orphan_ids})
    logger.info('deleted patient %s, promoted %s', patient_id, orphan_ids)
    return orphan_ids


def get_family(patient_id: int) -> Patient:
    patient = (
        Patient.objects.select_related('family')
        .prefetch_related('members')
        .filter(id=patient_id)
        .first()
    )
    if patient is None:
        raise NotFoundError('Patient not found.')
    return patient
