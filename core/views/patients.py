"""
Patient and family endpoints.

Guest registration and check-in are open to anyone at the front desk
kiosk; everything else requires a clinic account.  Business rules live in
``core.services``; these views only translate between the camelCase wire
format and service calls.
"""
from __future__ import annotations

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import AllowAny
from rest_framework.response import Response

from core.exceptions import ValidationError
from core.permissions import CanEditPatients, CanManageFamilies, IsClinicStaff, IsOwner
from core.serializers.dental import DentalRecordCreateSerializer, DentalRecordSerializer
from core.serializers.patient import (
    FamilyHeadCreateSerializer,
    FamilyMemberCreateSerializer,
    FamilyUnitCreateSerializer,
    OutstandingAdjustSerializer,
    PatientDetailSerializer,
    PatientSerializer,
    PatientUpdateSerializer,
    ReturningVisitSerializer,
    ScheduleAppointmentSerializer,
)
from core.services import family, ledger, patients, scheduling


def parse_id(value, label='patient id') -> int:
    try:
        pk = int(str(value).strip())
    except (TypeError, ValueError):
        raise ValidationError(f'Invalid {label}: {value!r}') from None
    if pk <= 0:
        raise ValidationError(f'Invalid {label}: {value!r}')
    return pk


def _actor(request):
    user = getattr(request, 'user', None)
    return user if getattr(user, 'is_authenticated', False) else None


def _forbidden():
    return Response({'ok': False, 'error': {'code': 'permission_denied', 'message': 'Permission denied'}},
                    status=status.HTTP_403_FORBIDDEN)


@api_view(['POST'])
@permission_classes([AllowAny])
def guest_submit(request):
    s = FamilyHeadCreateSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    head = family.create_family_head(s.validated_data, actor=_actor(request))
    return Response({
        'ok': True,
        'message': 'Patient registered successfully.',
        'patient': PatientSerializer(head).data,
    }, status=status.HTTP_201_CREATED)


@api_view(['POST'])
@permission_classes([AllowAny])
def guest_family_submit(request):
    s = FamilyUnitCreateSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    data = dict(s.validated_data)
    members = data.pop('members')
    head = family.create_family_unit(data, members, actor=_actor(request))
    return Response({
        'ok': True,
        'message': 'Family registered successfully.',
        'family': PatientDetailSerializer(head).data,
    }, status=status.HTTP_201_CREATED)


@api_view(['POST'])
@permission_classes([AllowAny])
def returning_guest_visit(request):
    s = ReturningVisitSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    visit = patients.record_returning_visit(s.validated_data['phoneNumber'])
    return Response({
        'ok': True,
        'message': 'Check-in recorded.',
        'patient': PatientSerializer(visit.patient).data,
        'visitId': visit.id,
        'checkInTime': visit.check_in_time,
    }, status=status.HTTP_201_CREATED)


@api_view(['POST'])
@permission_classes([CanManageFamilies])
def add_family_member(request, head_id):
    head_id = parse_id(head_id, 'family head id')
    s = FamilyMemberCreateSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    member = family.add_family_member(head_id, s.validated_data, actor=request.user)
    return Response({
        'ok': True,
        'message': 'Family member added successfully.',
        'patient': PatientSerializer(member).data,
    }, status=status.HTTP_201_CREATED)


@api_view(['GET', 'PUT', 'DELETE'])
@permission_classes([IsClinicStaff])
def patient_detail(request, pk):
    pk = parse_id(pk)
    if request.method == 'GET':
        return Response(PatientDetailSerializer(family.get_family(pk)).data)

    if request.method == 'PUT':
        if not CanEditPatients().has_permission(request, None):
            return _forbidden()
        s = PatientUpdateSerializer(data=request.data, partial=True)
        s.is_valid(raise_exception=True)
        patient = family.update_patient(pk, s.validated_data, actor=request.user)
        return Response({
            'ok': True,
            'message': 'Patient updated successfully.',
            'patient': PatientDetailSerializer(family.get_family(patient.id)).data,
        })

    if not IsOwner().has_permission(request, None):
        return _forbidden()
    family.delete_patient(pk, actor=request.user)
    return Response(status=status.HTTP_204_NO_CONTENT)


@api_view(['POST'])
@permission_classes([IsClinicStaff])
def schedule_appointment(request, pk):
    pk = parse_id(pk)
    s = ScheduleAppointmentSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    patient = scheduling.schedule_next_appointment(pk, s.validated_data['interval'], actor=request.user)
    return Response({
        'ok': True,
        'message': 'Next appointment scheduled.',
        'patient': PatientSerializer(patient).data,
    })


@api_view(['POST'])
@permission_classes([IsClinicStaff])
def send_reminder(request, pk):
    pk = parse_id(pk)
    result = scheduling.send_appointment_reminder(pk)
    return Response({'ok': True, 'message': 'Appointment reminder sent.', 'messageId': result.message_id})


@api_view(['POST'])
@permission_classes([IsOwner])
def adjust_outstanding(request, pk):
    pk = parse_id(pk)
    s = OutstandingAdjustSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    patient = ledger.adjust_outstanding(
        pk, s.validated_data['outstanding'], reason=s.validated_data['reason'], actor=request.user,
    )
    return Response({'ok': True, 'patient': PatientSerializer(patient).data})


@api_view(['GET', 'POST'])
@permission_classes([IsClinicStaff])
def dental_records(request, pk):
    pk = parse_id(pk)
    if request.method == 'GET':
        records = patients.list_dental_records(pk)
        return Response({'ok': True, 'records': DentalRecordSerializer(records, many=True).data})
    s = DentalRecordCreateSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    record = patients.create_dental_record(pk, request.user, s.validated_data)
    return Response({'ok': True, 'record': DentalRecordSerializer(record).data}, status=status.HTTP_201_CREATED)


@api_view(['GET'])
@permission_classes([CanEditPatients])
def debtors(request):
    owing, total = ledger.list_debtors()
    return Response({
        'ok': True,
        'count': len(owing),
        'totalOutstanding': str(total),
        'patients': PatientSerializer(owing, many=True).data,
    })


@api_view(['POST'])
@permission_classes([IsClinicStaff])
def send_procedure_reminder(request, pk, reminder_type):
    pk = parse_id(pk)
    result = scheduling.send_procedure_reminder(pk, reminder_type)
    return Response({'ok': True, 'message': f"'{reminder_type}' reminder sent.", 'messageId': result.message_id})


@api_view(['GET'])
@permission_classes([IsClinicStaff])
def patient_dental_record(request, pk, record_id):
    record = patients.get_dental_record(parse_id(record_id, 'dental record id'), patient_id=parse_id(pk))
    return Response({'ok': True, 'record': DentalRecordSerializer(record).data})


@api_view(['GET', 'PUT', 'DELETE'])
@permission_classes([IsClinicStaff])
def dental_record_detail(request, record_id):
    record_id = parse_id(record_id, 'dental record id')
    if request.method == 'GET':
        return Response({'ok': True, 'record': DentalRecordSerializer(patients.get_dental_record(record_id)).data})
    if request.method == 'PUT':
        s = DentalRecordCreateSerializer(data=request.data, partial=True)
        s.is_valid(raise_exception=True)
        record = patients.update_dental_record(record_id, s.validated_data, actor=request.user)
        return Response({'ok': True, 'record': DentalRecordSerializer(record).data})
    patients.delete_dental_record(record_id, actor=request.user)
    return Response(status=status.HTTP_204_NO_CONTENT)
