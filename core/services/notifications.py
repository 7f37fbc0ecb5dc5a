"""
Outbound notifications: templated email and the spreadsheet log.

Callers hand over values that are already committed.  Transport problems
on the email side are caught here and reported through the returned
``NotificationResult``; deciding whether such a failure matters is left
to the caller.
"""
import logging
import smtplib
from dataclasses import dataclass
from email.utils import make_msgid
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

import requests
from django.conf import settings
from django.contrib.auth import get_user_model
from django.core.mail import EmailMultiAlternatives
from django.core.validators import validate_email
from django.core.exceptions import ValidationError as DjangoValidationError
from django.template.loader import render_to_string

from core.exceptions import DependencyError, ValidationError

logger = logging.getLogger(__name__)

TEMPLATE_KINDS = (
    'receipt', 'appointment_reminder', 'new_patient', 'returning_patient',
    'scaling_reminder', 'extraction_reminder', 'root_canal_reminder',
)
# patient-facing mail gets a blind copy to the front desk
BCC_STAFF_KINDS = ('receipt', 'appointment_reminder', 'scaling_reminder', 'extraction_reminder', 'root_canal_reminder')

SHEET_PATIENTS = 'Sheet1'
SHEET_RECEIPTS = 'Sheet2'


@dataclass
class NotificationResult:
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


def _is_email(value) -> bool:
    try:
        validate_email(value)
    except DjangoValidationError:
        return False
    return True


def staff_emails() -> List[str]:
    """Addresses of active owner/staff accounts plus ``OWNER_EMAIL``."""
    User = get_user_model()
    emails = (
        User.objects.filter(role__in=('owner', 'staff'), is_active=True)
        .exclude(email='')
        .order_by('id')
        .values_list('email', flat=True)
    )
    out: List[str] = []
    for e in list(emails) + [getattr(settings, 'OWNER_EMAIL', '')]:
        if e and e not in out and _is_email(e):
            out.append(e)
    return out


class SheetLogger:
    """Append rows to the clinic spreadsheet through an HTTP webhook."""

    def __init__(self, url: Optional[str] = None, timeout: Optional[int] = None):
        self._url = url
        self._timeout = timeout

    @property
    def url(self) -> str:
        return self._url if self._url is not None else getattr(settings, 'SHEETS_WEBHOOK_URL', '')

    @property
    def timeout(self) -> int:
        return self._timeout or getattr(settings, 'SHEETS_TIMEOUT', 5)

    def append_row(self, sheet: str, values: Sequence[Any]) -> bool:
        if not self.url:
            logger.debug('sheet logging disabled, dropping row for %s', sheet)
            return False
        try:
            resp = requests.post(
                self.url,
                json={'sheet': sheet, 'values': [[_cell(v) for v in values]]},
                timeout=self.timeout,
            )
            resp.raise_for_status()
        except requests.RequestException as exc:
            raise DependencyError(f'failed to append row to {sheet}: {exc}') from exc
        logger.info('appended row to %s', sheet)
        return True


def _cell(v):
    if v is None:
        return ''
    if isinstance(v, (int, float, str, bool)):
        return v
    return str(v)


class NotificationDispatcher:

    def __init__(self, sheet_logger: Optional[SheetLogger] = None, from_email: Optional[str] = None):
        self.sheets = sheet_logger or SheetLogger()
        self._from_email = from_email

    @property
    def from_email(self) -> str:
        return self._from_email or settings.DEFAULT_FROM_EMAIL

    def render(self, template_kind: str, data: Mapping[str, Any]):
        if template_kind not in TEMPLATE_KINDS:
            raise ValidationError(f'unknown notification kind: {template_kind}')
        context: Dict[str, Any] = {
            'clinic_name': settings.CLINIC_NAME,
            'clinic_email': self.from_email,
        }
        context.update(data)
        subject = render_to_string(f'core/email/{template_kind}_subject.txt', context)
        subject = ' '.join(subject.split())
        text_body = render_to_string(f'core/email/{template_kind}.txt', context)
        html_body = render_to_string(f'core/email/{template_kind}.html', context)
        return subject, text_body, html_body

    def notify(self, recipient: Union[str, Iterable[str], None], template_kind: str,
               data: Mapping[str, Any]) -> NotificationResult:
        if isinstance(recipient, str):
            recipients = [recipient]
        else:
            recipients = list(recipient or [])
        recipients = [r for r in recipients if r]
        if not recipients:
            return NotificationResult(success=False, error='no recipient')

        subject, text_body, html_body = self.render(template_kind, data)
        bcc = []
        if template_kind in BCC_STAFF_KINDS:
            bcc = [e for e in staff_emails() if e not in recipients]
        message_id = make_msgid(domain=self.from_email.rpartition('@')[2] or None)
        message = EmailMultiAlternatives(
            subject=subject,
            body=text_body,
            from_email=self.from_email,
            to=recipients,
            bcc=bcc,
            headers={'Message-ID': message_id},
        )
        message.attach_alternative(html_body, 'text/html')
        try:
            sent = message.send(fail_silently=False)
        except (smtplib.SMTPException, OSError) as exc:
            logger.warning('%s email to %s failed: %s', template_kind, recipients, exc)
            return NotificationResult(success=False, error=str(exc) or exc.__class__.__name__)
        if not sent:
            return NotificationResult(success=False, error='message was not accepted')
        logger.info('%s email sent to %s id=%s', template_kind, recipients, message_id)
        return NotificationResult(success=True, message_id=message_id)

    def notify_staff(self, template_kind: str, data: Mapping[str, Any]) -> NotificationResult:
        return self.notify(staff_emails(), template_kind, data)

    def log_row(self, sheet: str, values: Sequence[Any]) -> bool:
        return self.sheets.append_row(sheet, values)


_dispatcher: Optional[NotificationDispatcher] = None


def get_dispatcher() -> NotificationDispatcher:
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = NotificationDispatcher()
    return _dispatcher


def announce_patient(patient, template_kind: str, **extra) -> None:
    """Tell the front desk about a registration or check-in.

    Runs after the registering transaction has committed.  Nothing here
    may fail the request that triggered it, so errors are only logged.
    """
    data = {
        'patient_name': patient.name,
        'patient_id': patient.id,
        'phone_number': patient.phone_number or '',
        'email': patient.email or '',
        'is_family_head': patient.is_family_head,
    }
    data.update(extra)
    dispatcher = get_dispatcher()
    try:
        result = dispatcher.notify_staff(template_kind, data)
        if template_kind == 'new_patient':
            dispatcher.log_row(SHEET_PATIENTS, [
                patient.id, patient.name, patient.sex, patient.date_of_birth,
                patient.phone_number, patient.email, patient.address, patient.hmo_name,
                patient.created_at,
            ])
    except Exception:
        logger.exception('%s announcement for patient %s failed', template_kind, patient.id)
        return
    if not result.success:
        logger.warning('%s announcement for patient %s not sent: %s', template_kind, patient.id, result.error)
