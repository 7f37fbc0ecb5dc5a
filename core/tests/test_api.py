"""
Integration tests for the clinic backend API.

These exercise the HTTP surface end to end: guest registration, family
management, receipt posting and scheduling, including role checks and
the unified error body.  They use Django REST Framework's APIClient
within the APITestCase base class.

To run the tests:

```
pytest -q core/tests
```
"""
from datetime import timedelta
from decimal import Decimal
from unittest import mock

import requests
from django.core import mail
from django.test import override_settings
from django.utils import timezone
from rest_framework import status
from rest_framework.test import APIClient, APITestCase

from core.models import Patient, Receipt, User
from core.services.notifications import NotificationDispatcher, NotificationResult


@override_settings(EMAIL_BACKEND='django.core.mail.backends.locmem.EmailBackend', SHEETS_WEBHOOK_URL='')
class ClinicAPITests(APITestCase):
    def setUp(self) -> None:
        self.owner = User.objects.create_user(username='owner1', password='P@ssw0rd1', role='owner',
                                              email='owner@clinic.test')
        self.staff = User.objects.create_user(username='staff1', password='P@ssw0rd1', role='staff')
        self.nurse = User.objects.create_user(username='nurse1', password='P@ssw0rd1', role='nurse')
        self.doctor = User.objects.create_user(username='doctor1', password='P@ssw0rd1', role='doctor')
        self.head = Patient.objects.create(
            is_family_head=True, name='Ada Obi', sex='F', phone_number='08030000001',
            email='ada@example.com', address='12 Marina Rd', hmo={'name': 'Avon'},
        )
        self.client = APIClient()

    def as_user(self, user):
        self.client.force_authenticate(user=user)

    # ---------------------------------------------------------------- guests
    def test_guest_submit_creates_head(self):
        resp = self.client.post('/api/patients/guest-submit', {
            'name': 'Bola Ade', 'sex': 'F', 'phoneNumber': '0805', 'email': 'bola@example.com',
            'dateOfBirth': '1990-05-01', 'hmo': {'name': 'Hygeia', 'status': 'active'},
        }, format='json')
        self.assertEqual(resp.status_code, status.HTTP_201_CREATED)
        patient = resp.data['patient']
        self.assertTrue(patient['isFamilyHead'])
        self.assertIsNone(patient['familyId'])
        self.assertEqual(patient['hmo'], {'name': 'Hygeia', 'status': 'active'})
        self.assertEqual(patient['balanceStatus'], 'settled')

    def test_guest_submit_duplicate_phone_is_409(self):
        resp = self.client.post('/api/patients/guest-submit',
                                {'name': 'Dup', 'sex': 'M', 'phoneNumber': '08030000001'}, format='json')
        self.assertEqual(resp.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(resp.data['ok'], False)
        self.assertEqual(resp.data['error']['code'], 'conflict')
        self.assertEqual(Patient.objects.count(), 1)

    def test_guest_submit_missing_fields_is_400(self):
        resp = self.client.post('/api/patients/guest-submit', {'name': 'No Phone', 'sex': 'M'}, format='json')
        self.assertEqual(resp.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(resp.data['ok'], False)

    def test_guest_family_submit(self):
        resp = self.client.post('/api/patients/guest-family-submit', {
            'name': 'Chi Eze', 'sex': 'M', 'phoneNumber': '0806', 'address': '3 Allen Ave',
            'members': [{'name': 'Ngozi Eze', 'sex': 'F'}, {'name': 'Obi Eze', 'sex': 'M'}],
        }, format='json')
        self.assertEqual(resp.status_code, status.HTTP_201_CREATED)
        fam = resp.data['family']
        self.assertEqual(len(fam['familyMembers']), 2)
        self.assertTrue(all(m['address'] == '3 Allen Ave' for m in fam['familyMembers']))
        self.assertTrue(all(m['familyId'] == fam['id'] for m in fam['familyMembers']))

    def test_guest_family_submit_needs_members(self):
        resp = self.client.post('/api/patients/guest-family-submit',
                                {'name': 'Solo', 'sex': 'M', 'phoneNumber': '0807', 'members': []}, format='json')
        self.assertEqual(resp.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertFalse(Patient.objects.filter(name='Solo').exists())

    def test_returning_visit(self):
        resp = self.client.post('/api/patients/returning-guest-visit', {'phoneNumber': '08030000001'}, format='json')
        self.assertEqual(resp.status_code, status.HTTP_201_CREATED)
        self.assertEqual(resp.data['patient']['id'], self.head.id)
        resp = self.client.post('/api/patients/returning-guest-visit', {'phoneNumber': 'ADA@example.com'}, format='json')
        self.assertEqual(resp.status_code, status.HTTP_201_CREATED)
        resp = self.client.post('/api/patients/returning-guest-visit', {'phoneNumber': '0000'}, format='json')
        self.assertEqual(resp.status_code, status.HTTP_404_NOT_FOUND)

    # ---------------------------------------------------------------- family
    def test_add_member_permissions_and_errors(self):
        url = f'/api/patients/{self.head.id}/members'
        body = {'name': 'Kid Obi', 'sex': 'M'}
        self.assertEqual(self.client.post(url, body, format='json').status_code, status.HTTP_401_UNAUTHORIZED)
        self.as_user(self.nurse)
        self.assertEqual(self.client.post(url, body, format='json').status_code, status.HTTP_403_FORBIDDEN)
        self.as_user(self.doctor)
        resp = self.client.post(url, body, format='json')
        self.assertEqual(resp.status_code, status.HTTP_201_CREATED)
        member_id = resp.data['patient']['id']
        self.assertEqual(resp.data['patient']['hmo'], {'name': 'Avon'})

        resp = self.client.post(f'/api/patients/{member_id}/members', body, format='json')
        self.assertEqual(resp.status_code, status.HTTP_404_NOT_FOUND)
        resp = self.client.post('/api/patients/abc/members', body, format='json')
        self.assertEqual(resp.status_code, status.HTTP_400_BAD_REQUEST)

    def test_get_patient_with_family(self):
        member = Patient.objects.create(family=self.head, name='Kid', sex='F', address=self.head.address)
        self.as_user(self.nurse)
        resp = self.client.get(f'/api/patients/{member.id}')
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.assertEqual(resp.data['familyHead']['id'], self.head.id)
        resp = self.client.get(f'/api/patients/{self.head.id}')
        self.assertEqual([m['id'] for m in resp.data['familyMembers']], [member.id])
        self.assertEqual(self.client.get('/api/patients/99999').status_code, status.HTTP_404_NOT_FOUND)

    def test_update_patient(self):
        member = Patient.objects.create(family=self.head, name='Kid', sex='F', hmo={'name': 'Avon'})
        url = f'/api/patients/{self.head.id}'
        self.as_user(self.nurse)
        self.assertEqual(self.client.put(url, {'name': 'x'}, format='json').status_code, status.HTTP_403_FORBIDDEN)

        self.as_user(self.staff)
        resp = self.client.put(url, {'hmo': {'name': 'Reliance'}}, format='json')
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        member.refresh_from_db()
        self.assertEqual(member.hmo, {'name': 'Reliance'})

        resp = self.client.put(url, {'familyId': member.id}, format='json')
        self.assertEqual(resp.status_code, status.HTTP_400_BAD_REQUEST)
        resp = self.client.put(f'/api/patients/{member.id}', {'phoneNumber': '0899'}, format='json')
        self.assertEqual(resp.status_code, status.HTTP_400_BAD_REQUEST)

        for cleared in ('', None):
            resp = self.client.put(url, {'phoneNumber': cleared}, format='json')
            self.assertEqual(resp.status_code, status.HTTP_400_BAD_REQUEST)
        self.head.refresh_from_db()
        self.assertEqual(self.head.phone_number, '08030000001')

        Patient.objects.create(is_family_head=True, name='Other', sex='M', phone_number='0810')
        resp = self.client.put(url, {'phoneNumber': '0810'}, format='json')
        self.assertEqual(resp.status_code, status.HTTP_409_CONFLICT)

    def test_delete_patient_owner_only(self):
        member = Patient.objects.create(family=self.head, name='Kid', sex='F')
        url = f'/api/patients/{self.head.id}'
        self.as_user(self.staff)
        self.assertEqual(self.client.delete(url).status_code, status.HTTP_403_FORBIDDEN)
        self.as_user(self.owner)
        self.assertEqual(self.client.delete(url).status_code, status.HTTP_204_NO_CONTENT)
        member.refresh_from_db()
        self.assertTrue(member.is_family_head)
        self.assertIsNone(member.family_id)
        self.assertEqual(self.client.delete(url).status_code, status.HTTP_404_NOT_FOUND)

    # -------------------------------------------------------------- receipts
    def test_receipt_flow(self):
        self.as_user(self.nurse)
        resp = self.client.post('/api/receipts/send', {'receiptData': {
            'patientId': self.head.id, 'amountPaid': 3000, 'totalDueFromPatient': 5000,
            'receiptNumber': 'R-1', 'receiptDate': '2024-01-06', 'paymentMethod': 'Transfer',
            'items': [{'description': 'Filling', 'quantity': 2, 'unitPrice': '2500'}],
        }}, format='json')
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.assertTrue(resp.data['emailSent'])
        self.assertEqual(resp.data['newOutstanding'], '2000.00')
        self.assertEqual(len(mail.outbox), 1)
        self.assertEqual(mail.outbox[0].bcc, ['owner@clinic.test'])

        resp = self.client.post('/api/receipts/send', {
            'patientId': self.head.id, 'amountPaid': '2000.00', 'totalDueFromPatient': '0.00',
        }, format='json')
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.head.refresh_from_db()
        self.assertEqual(self.head.outstanding, Decimal('0.00'))
        self.assertEqual(Receipt.objects.filter(patient=self.head).count(), 2)

    def test_receipt_email_failure_still_posts(self):
        self.as_user(self.staff)
        failed = NotificationResult(success=False, error='smtp down')
        with mock.patch.object(NotificationDispatcher, 'notify', return_value=failed):
            resp = self.client.post('/api/receipts/send', {
                'patientId': self.head.id, 'amountPaid': 0, 'totalDueFromPatient': 750,
            }, format='json')
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.assertFalse(resp.data['emailSent'])
        self.head.refresh_from_db()
        self.assertEqual(self.head.outstanding, Decimal('750.00'))
        self.assertEqual(Receipt.objects.get().notification_status, Receipt.NOTIFY_FAILED)

    def test_receipt_errors(self):
        self.as_user(self.doctor)
        body = {'patientId': self.head.id, 'amountPaid': 1, 'totalDueFromPatient': 1}
        self.assertEqual(self.client.post('/api/receipts/send', body, format='json').status_code,
                         status.HTTP_403_FORBIDDEN)
        self.as_user(self.owner)
        no_email = Patient.objects.create(is_family_head=True, name='Q', sex='F', phone_number='0830')
        resp = self.client.post('/api/receipts/send', dict(body, patientId=no_email.id), format='json')
        self.assertEqual(resp.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(resp.data['error']['code'], 'recipient_missing')
        resp = self.client.post('/api/receipts/send', dict(body, patientId=99999), format='json')
        self.assertEqual(resp.status_code, status.HTTP_404_NOT_FOUND)
        resp = self.client.post('/api/receipts/send', dict(body, amountPaid=-5), format='json')
        self.assertEqual(resp.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertFalse(Receipt.objects.exists())

    def test_oversized_amounts_are_400(self):
        self.as_user(self.owner)
        resp = self.client.post('/api/receipts/send', {
            'patientId': self.head.id, 'amountPaid': '0', 'totalDueFromPatient': '1000000000',
        }, format='json')
        self.assertEqual(resp.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertFalse(resp.data['ok'])

        resp = self.client.post('/api/receipts/send', {
            'patientId': self.head.id, 'amountPaid': '0', 'totalDueFromPatient': '99999999.995',
        }, format='json')
        self.assertEqual(resp.status_code, status.HTTP_400_BAD_REQUEST)

        Patient.objects.filter(id=self.head.id).update(outstanding=Decimal('99999999.00'))
        resp = self.client.post('/api/receipts/send', {
            'patientId': self.head.id, 'amountPaid': '0', 'totalDueFromPatient': '5.00',
        }, format='json')
        self.assertEqual(resp.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertFalse(Receipt.objects.exists())

        resp = self.client.post(f'/api/patients/{self.head.id}/outstanding',
                                {'outstanding': '1000000000', 'reason': 'typo'}, format='json')
        self.assertEqual(resp.status_code, status.HTTP_400_BAD_REQUEST)
        self.head.refresh_from_db()
        self.assertEqual(self.head.outstanding, Decimal('99999999.00'))

    @override_settings(SHEETS_WEBHOOK_URL='https://sheets.test/hook')
    def test_receipt_survives_sheet_outage(self):
        self.as_user(self.staff)
        with mock.patch('core.services.notifications.requests.post',
                        side_effect=requests.ConnectionError('sheets down')) as post:
            resp = self.client.post('/api/receipts/send', {
                'patientId': self.head.id, 'amountPaid': 200, 'totalDueFromPatient': 1000,
            }, format='json')
        self.assertTrue(post.called)
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.assertTrue(resp.data['emailSent'])
        self.assertEqual(resp.data['newOutstanding'], '800.00')
        self.head.refresh_from_db()
        self.assertEqual(self.head.outstanding, Decimal('800.00'))
        self.assertEqual(Receipt.objects.get().notification_status, Receipt.NOTIFY_SENT)

    # ------------------------------------------------------------ scheduling
    def test_schedule_and_remind(self):
        self.as_user(self.doctor)
        url = f'/api/patients/{self.head.id}/schedule-appointment'
        resp = self.client.post(url, {'interval': '2 weeks'}, format='json')
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.assertIsNotNone(resp.data['patient']['nextAppointmentDate'])
        expected = timezone.localdate() + timedelta(days=14)
        if expected.weekday() == 6:
            expected += timedelta(days=1)
        self.assertEqual(resp.data['patient']['nextAppointmentDate'], expected.isoformat())

        self.assertEqual(self.client.post(url, {'interval': 'soon'}, format='json').status_code,
                         status.HTTP_400_BAD_REQUEST)
        self.assertEqual(self.client.post('/api/patients/99999/schedule-appointment', {'interval': '1 day'},
                                          format='json').status_code, status.HTTP_404_NOT_FOUND)

        resp = self.client.post(f'/api/patients/{self.head.id}/send-reminder', format='json')
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.assertEqual(mail.outbox[-1].to, ['ada@example.com'])

        failed = NotificationResult(success=False, error='smtp down')
        with mock.patch.object(NotificationDispatcher, 'notify', return_value=failed):
            resp = self.client.post(f'/api/patients/{self.head.id}/send-reminder', format='json')
        self.assertEqual(resp.status_code, status.HTTP_502_BAD_GATEWAY)

    def test_adjust_outstanding_owner_only(self):
        url = f'/api/patients/{self.head.id}/outstanding'
        body = {'outstanding': '-120.50', 'reason': 'overpayment carried'}
        self.as_user(self.staff)
        self.assertEqual(self.client.post(url, body, format='json').status_code, status.HTTP_403_FORBIDDEN)
        self.as_user(self.owner)
        resp = self.client.post(url, body, format='json')
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.assertEqual(resp.data['patient']['outstanding'], '-120.50')
        self.assertEqual(resp.data['patient']['balanceStatus'], 'credit')

    # ---------------------------------------------------------- dental notes
    def test_dental_records(self):
        self.as_user(self.doctor)
        url = f'/api/patients/{self.head.id}/dental-records'
        resp = self.client.post(url, {
            'complaint': 'Pain on lower left molar',
            'provisionalDiagnosis': ['Irreversible pulpitis'],
            'treatmentPlan': ['RCT', 'Crown'],
        }, format='json')
        self.assertEqual(resp.status_code, status.HTTP_201_CREATED)
        self.assertEqual(resp.data['record']['doctorId'], self.doctor.id)
        resp = self.client.get(url)
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.assertEqual(len(resp.data['records']), 1)
        self.assertEqual(resp.data['records'][0]['treatmentPlan'], ['RCT', 'Crown'])
        self.assertEqual(self.client.post(url, {}, format='json').status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(self.client.get('/api/patients/99999/dental-records').status_code,
                         status.HTTP_404_NOT_FOUND)

    def test_dental_record_detail_update_delete(self):
        self.as_user(self.doctor)
        resp = self.client.post(f'/api/patients/{self.head.id}/dental-records',
                                {'complaint': 'Sensitivity', 'treatmentPlan': ['Fluoride varnish']}, format='json')
        record_id = resp.data['record']['id']
        url = f'/api/patients/dental-records/{record_id}'

        resp = self.client.get(url)
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.assertEqual(resp.data['record']['complaint'], 'Sensitivity')
        resp = self.client.get(f'/api/patients/{self.head.id}/dental-records/{record_id}')
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        other = Patient.objects.create(is_family_head=True, name='Other', sex='M', phone_number='0811')
        self.assertEqual(self.client.get(f'/api/patients/{other.id}/dental-records/{record_id}').status_code,
                         status.HTTP_404_NOT_FOUND)

        self.as_user(self.nurse)
        resp = self.client.put(url, {'treatmentDone': 'Varnish applied <b>today</b>'}, format='json')
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.assertEqual(resp.data['record']['treatmentDone'], 'Varnish applied today')
        self.assertEqual(resp.data['record']['complaint'], 'Sensitivity')
        self.assertEqual(resp.data['record']['doctorId'], self.doctor.id)
        self.assertEqual(self.client.put(url, {}, format='json').status_code, status.HTTP_400_BAD_REQUEST)
        resp = self.client.put(url, {'complaint': '', 'treatmentPlan': [], 'treatmentDone': ''}, format='json')
        self.assertEqual(resp.status_code, status.HTTP_400_BAD_REQUEST)

        self.assertEqual(self.client.delete(url).status_code, status.HTTP_204_NO_CONTENT)
        self.assertEqual(self.client.get(url).status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(self.client.delete(url).status_code, status.HTTP_404_NOT_FOUND)

    # ------------------------------------------------------------- reporting
    def test_debtors(self):
        Patient.objects.filter(id=self.head.id).update(outstanding=Decimal('250.00'))
        big = Patient.objects.create(is_family_head=True, name='Big', sex='M', phone_number='0812',
                                     outstanding=Decimal('4000.00'))
        Patient.objects.create(is_family_head=True, name='Paid', sex='F', phone_number='0813')
        self.as_user(self.nurse)
        self.assertEqual(self.client.get('/api/patients/debtors').status_code, status.HTTP_403_FORBIDDEN)
        self.as_user(self.staff)
        resp = self.client.get('/api/patients/debtors')
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.assertEqual(resp.data['count'], 2)
        self.assertEqual(resp.data['totalOutstanding'], '4250.00')
        self.assertEqual([p['id'] for p in resp.data['patients']], [big.id, self.head.id])

    def test_procedure_reminders(self):
        self.as_user(self.nurse)
        url = f'/api/patients/{self.head.id}/reminders'
        resp = self.client.post(f'{url}/scaling', format='json')
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.assertEqual(mail.outbox[-1].to, ['ada@example.com'])
        self.assertEqual(mail.outbox[-1].bcc, ['owner@clinic.test'])

        self.assertEqual(self.client.post(f'{url}/extraction', format='json').status_code,
                         status.HTTP_400_BAD_REQUEST)
        self.assertEqual(self.client.post(f'{url}/braces', format='json').status_code,
                         status.HTTP_400_BAD_REQUEST)
        self.assertEqual(self.client.post('/api/patients/99999/reminders/rootCanal', format='json').status_code,
                         status.HTTP_404_NOT_FOUND)

        failed = NotificationResult(success=False, error='smtp down')
        with mock.patch.object(NotificationDispatcher, 'notify', return_value=failed):
            resp = self.client.post(f'{url}/rootCanal', format='json')
        self.assertEqual(resp.status_code, status.HTTP_502_BAD_GATEWAY)
