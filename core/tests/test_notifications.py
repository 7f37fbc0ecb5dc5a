import pytest
import requests
from django.core import mail

from core.exceptions import DependencyError, ValidationError
from core.models import User
from core.services import notifications
from core.services.notifications import NotificationDispatcher, SheetLogger, get_dispatcher, staff_emails

pytestmark = pytest.mark.django_db


class FakeResponse:
    def __init__(self, status=200):
        self.status = status

    def raise_for_status(self):
        if self.status >= 400:
            raise requests.HTTPError(f'{self.status} error')


def test_sheet_logger_disabled_without_url():
    assert SheetLogger(url='').append_row('Sheet1', ['a']) is False


def test_sheet_logger_posts_row(monkeypatch):
    sent = {}

    def fake_post(url, json=None, timeout=None):
        sent.update(url=url, json=json, timeout=timeout)
        return FakeResponse()

    monkeypatch.setattr(notifications.requests, 'post', fake_post)
    assert SheetLogger(url='https://sheets.test/hook', timeout=3).append_row('Sheet2', ['R-1', None, 12]) is True
    assert sent['url'] == 'https://sheets.test/hook'
    assert sent['json'] == {'sheet': 'Sheet2', 'values': [['R-1', '', 12]]}
    assert sent['timeout'] == 3


def test_sheet_logger_failure_is_dependency_error(monkeypatch):
    monkeypatch.setattr(notifications.requests, 'post', lambda *a, **kw: FakeResponse(503))
    with pytest.raises(DependencyError):
        SheetLogger(url='https://sheets.test/hook').append_row('Sheet1', ['x'])


def test_staff_emails_include_owner_setting(settings):
    User.objects.create_user(username='o', password='x', role='owner', email='o@clinic.test')
    User.objects.create_user(username='s', password='x', role='staff', email='not-an-email')
    User.objects.create_user(username='n', password='x', role='nurse', email='n@clinic.test')
    settings.OWNER_EMAIL = 'boss@clinic.test'
    assert staff_emails() == ['o@clinic.test', 'boss@clinic.test']


def test_notify_without_recipient_reports_failure():
    result = NotificationDispatcher().notify(None, 'receipt', {})
    assert result.success is False
    assert mail.outbox == []


def test_unknown_kind_rejected():
    with pytest.raises(ValidationError):
        NotificationDispatcher().notify('a@example.com', 'newsletter', {})


def test_smtp_error_is_reported(monkeypatch):
    def boom(self, fail_silently=False):
        raise OSError('connection refused')

    monkeypatch.setattr(notifications.EmailMultiAlternatives, 'send', boom)
    result = NotificationDispatcher().notify('a@example.com', 'appointment_reminder', {
        'patient_name': 'Ada', 'appointment_date': 'Monday', 'has_outstanding': False,
    })
    assert result.success is False
    assert 'connection refused' in result.error


def test_returning_patient_announcement(head, settings):
    settings.OWNER_EMAIL = 'desk@clinic.test'
    notifications.announce_patient(head, 'returning_patient', check_in_time='2024-01-08 09:30')
    assert len(mail.outbox) == 1
    assert mail.outbox[0].to == ['desk@clinic.test']
    assert 'Ada Obi' in mail.outbox[0].subject
    assert '09:30' in mail.outbox[0].body


def test_get_dispatcher_is_shared():
    assert get_dispatcher() is get_dispatcher()
