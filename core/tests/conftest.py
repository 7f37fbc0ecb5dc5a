import pytest

from core.models import Patient
from core.services import notifications


@pytest.fixture(autouse=True)
def _isolated_notifications(settings, monkeypatch):
    settings.EMAIL_BACKEND = 'django.core.mail.backends.locmem.EmailBackend'
    settings.SHEETS_WEBHOOK_URL = ''
    settings.OWNER_EMAIL = ''
    monkeypatch.setattr(notifications, '_dispatcher', None)


@pytest.fixture
def head():
    return Patient.objects.create(
        is_family_head=True, name='Ada Obi', sex='F', phone_number='08030000001',
        email='ada@example.com', address='12 Marina Rd', hmo={'name': 'Avon'},
    )
