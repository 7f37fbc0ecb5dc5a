# core/management/commands/ensure_test_users.py
from django.core.management.base import BaseCommand
from django.contrib.auth.hashers import make_password
from core.models import User

TEST_SET = [
    ("owner1", "owner"),
    ("staff1", "staff"),
    ("nurse1", "nurse"),
    ("doctor1", "doctor"),
]


class Command(BaseCommand):
    help = "Ensure one test account per clinic role exists (idempotent)."

    def add_arguments(self, parser):
        parser.add_argument("--password", default="123456", help="password set on every test account")

    def handle(self, *args, **opts):
        password = make_password(opts["password"])
        for username, role in TEST_SET:
            u, created = User.objects.get_or_create(
                username=username,
                defaults={"role": role, "password": password, "is_active": True},
            )
            if not created:
                # reset password, role and active flag
                u.password = password
                u.role = role
                u.is_active = True
                u.save(update_fields=["password", "role", "is_active"])
            self.stdout.write(self.style.SUCCESS(f"ok: {username} ({role})"))
        self.stdout.write(self.style.SUCCESS("All test users ensured."))
