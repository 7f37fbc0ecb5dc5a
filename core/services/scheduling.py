"""
Follow-up appointment scheduling.

Intervals come from a closed set.  Day and week intervals add days; month
intervals move by calendar months and clamp to the last day of the target
month (31 Jan + 1 month -> 28/29 Feb).  The clinic is closed on Sundays, so
a date landing on one is pushed to Monday.
"""
import calendar
import logging
import re
from datetime import date, timedelta

from django.utils import timezone

from core.exceptions import DependencyError, NotFoundError, RecipientMissingError, ValidationError
from core.models import Patient
from core.services.audit import log_action
from core.services.notifications import get_dispatcher

logger = logging.getLogger(__name__)

DAYS = 'days'
MONTHS = 'months'

INTERVALS = {
    '1day': (DAYS, 1),
    '2days': (DAYS, 2),
    '3days': (DAYS, 3),
    '1week': (DAYS, 7),
    '2weeks': (DAYS, 14),
    '1month': (MONTHS, 1),
    '6weeks': (DAYS, 42),
    '3months': (MONTHS, 3),
    '6months': (MONTHS, 6),
}

SUNDAY = 6


def normalize_interval(interval) -> str:
    if not isinstance(interval, str) or not interval.strip():
        raise ValidationError('An appointment interval must be provided.')
    return re.sub(r'\s+', '', interval).lower()


def add_months(d: date, months: int) -> date:
    idx = d.month - 1 + months
    year, month = d.year + idx // 12, idx % 12 + 1
    day = min(d.day, calendar.monthrange(year, month)[1])
    return d.replace(year=year, month=month, day=day)


def resolve_interval(interval: str, base_date: date) -> date:
    key = normalize_interval(interval)
    if key not in INTERVALS:
        raise ValidationError(f'Invalid appointment interval provided: {interval!r}')
    unit, n = INTERVALS[key]
    target = base_date + timedelta(days=n) if unit == DAYS else add_months(base_date, n)
    if target.weekday() == SUNDAY:
        target += timedelta(days=1)
    return target


def schedule_next_appointment(patient_id, interval, *, today=None, actor=None) -> Patient:
    patient = Patient.objects.filter(id=patient_id).first()
    if patient is None:
        raise NotFoundError('Patient not found.')
    next_date = resolve_interval(interval, today or timezone.localdate())
    previous = patient.next_appointment_date
    patient.next_appointment_date = next_date
    patient.save(update_fields=['next_appointment_date', 'updated_at'])
    log_action(user=actor, action='appointment_schedule', object_type='patient', object_id=patient.id, detail={
        'interval': interval,
        'previous': previous.isoformat() if previous else None,
        'next': next_date.isoformat(),
    })
    logger.info('patient %s next appointment %s (%s)', patient.id, next_date, interval)
    return patient


def send_appointment_reminder(patient_id, *, notifier=None):
    patient = Patient.objects.filter(id=patient_id).first()
    if patient is None:
        raise NotFoundError('Patient not found.')
    if not patient.email:
        raise RecipientMissingError('Patient does not have an email address.')
    if not patient.next_appointment_date:
        raise ValidationError('Patient does not have a next appointment scheduled.')

    data = {
        'patient_name': patient.name,
        'appointment_date': patient.next_appointment_date.strftime('%A, %d %B %Y'),
        'has_outstanding': patient.outstanding > 0,
        'outstanding': f'{patient.outstanding:,.2f}',
    }
    result = (notifier or get_dispatcher()).notify(patient.email, 'appointment_reminder', data)
    if not result.success:
        logger.warning('reminder for patient %s failed: %s', patient.id, result.error)
        raise DependencyError(f'Failed to send reminder: {result.error}')
    logger.info('reminder sent to patient %s for %s', patient.id, patient.next_appointment_date)
    return result


# wire name -> (template kind, needs a scheduled appointment)
PROCEDURE_REMINDERS = {
    'scaling': ('scaling_reminder', False),
    'extraction': ('extraction_reminder', True),
    'rootCanal': ('root_canal_reminder', False),
}


def send_procedure_reminder(patient_id, reminder_type, *, notifier=None):
    """Aftercare reminder for a procedure; extraction reviews need a booked date."""
    if reminder_type not in PROCEDURE_REMINDERS:
        raise ValidationError(f'Invalid reminder type: {reminder_type!r}')
    template_kind, needs_date = PROCEDURE_REMINDERS[reminder_type]
    patient = Patient.objects.filter(id=patient_id).first()
    if patient is None:
        raise NotFoundError('Patient not found.')
    if not patient.email:
        raise RecipientMissingError('Patient does not have an email address.')
    if needs_date and not patient.next_appointment_date:
        raise ValidationError('Patient does not have a next appointment date for the extraction review.')

    data = {'patient_name': patient.name}
    if patient.next_appointment_date:
        data['appointment_date'] = patient.next_appointment_date.strftime('%A, %d %B %Y')
    result = (notifier or get_dispatcher()).notify(patient.email, template_kind, data)
    if not result.success:
        logger.warning('%s reminder for patient %s failed: %s', reminder_type, patient.id, result.error)
        raise DependencyError(f'Failed to send reminder: {result.error}')
    logger.info('%s reminder sent to patient %s', reminder_type, patient.id)
    return result
