import bleach
from rest_framework import serializers

from core.models import Patient


def _clean(v):
    return bleach.clean((v or '').strip(), strip=True)


class HmoSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=255)
    status = serializers.CharField(max_length=64, required=False, allow_blank=True)


class FamilyMemberCreateSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=255)
    sex = serializers.CharField(max_length=50)
    dateOfBirth = serializers.DateField(source='date_of_birth', required=False, allow_null=True)

    def validate_name(self, v):
        v = _clean(v)
        if not v:
            raise serializers.ValidationError('Name is required.')
        return v

    def validate_sex(self, v):
        v = _clean(v)
        if not v:
            raise serializers.ValidationError('Sex is required.')
        return v


class FamilyHeadCreateSerializer(FamilyMemberCreateSerializer):
    phoneNumber = serializers.CharField(source='phone_number', max_length=20)
    email = serializers.EmailField(max_length=255, required=False, allow_blank=True, allow_null=True)
    address = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    hmo = HmoSerializer(required=False, allow_null=True)

    def validate_phoneNumber(self, v):
        v = _clean(v)
        if not v:
            raise serializers.ValidationError('Phone number is required.')
        return v

    def validate_email(self, v):
        return (v or '').strip() or None

    def validate_address(self, v):
        return _clean(v) or None


class FamilyUnitCreateSerializer(FamilyHeadCreateSerializer):
    members = FamilyMemberCreateSerializer(many=True, allow_empty=False)


class PatientUpdateSerializer(serializers.Serializer):
    """Partial update payload.

    The structural keys are accepted here only so the service layer can
    reject them explicitly instead of having them silently dropped.
    """
    name = serializers.CharField(max_length=255, required=False)
    sex = serializers.CharField(max_length=50, required=False)
    dateOfBirth = serializers.DateField(source='date_of_birth', required=False, allow_null=True)
    phoneNumber = serializers.CharField(source='phone_number', max_length=20, required=False, allow_blank=True, allow_null=True)
    email = serializers.EmailField(max_length=255, required=False, allow_blank=True, allow_null=True)
    address = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    hmo = HmoSerializer(required=False, allow_null=True)
    familyId = serializers.IntegerField(source='family_id', required=False, allow_null=True)
    isFamilyHead = serializers.BooleanField(source='is_family_head', required=False)

    def validate_name(self, v):
        return _clean(v)

    def validate_sex(self, v):
        return _clean(v)

    def validate_phoneNumber(self, v):
        return _clean(v) or None

    def validate_email(self, v):
        return (v or '').strip() or None

    def validate_address(self, v):
        return _clean(v) or None


class ScheduleAppointmentSerializer(serializers.Serializer):
    interval = serializers.CharField(max_length=32)


class ReturningVisitSerializer(serializers.Serializer):
    phoneNumber = serializers.CharField(max_length=255)


class OutstandingAdjustSerializer(serializers.Serializer):
    outstanding = serializers.DecimalField(max_digits=10, decimal_places=2)
    reason = serializers.CharField(max_length=255)


class PatientSerializer(serializers.ModelSerializer):
    dateOfBirth = serializers.DateField(source='date_of_birth', read_only=True)
    phoneNumber = serializers.CharField(source='phone_number', read_only=True)
    familyId = serializers.IntegerField(source='family_id', read_only=True)
    isFamilyHead = serializers.BooleanField(source='is_family_head', read_only=True)
    nextAppointmentDate = serializers.DateField(source='next_appointment_date', read_only=True)
    balanceStatus = serializers.CharField(source='balance_status', read_only=True)
    createdAt = serializers.DateTimeField(source='created_at', read_only=True)
    updatedAt = serializers.DateTimeField(source='updated_at', read_only=True)

    class Meta:
        model = Patient
        fields = [
            'id', 'name', 'sex', 'dateOfBirth', 'phoneNumber', 'email', 'address', 'hmo',
            'familyId', 'isFamilyHead', 'nextAppointmentDate', 'outstanding', 'balanceStatus',
            'createdAt', 'updatedAt',
        ]
        read_only_fields = fields


class PatientDetailSerializer(PatientSerializer):
    familyHead = serializers.SerializerMethodField()
    familyMembers = serializers.SerializerMethodField()

    class Meta(PatientSerializer.Meta):
        fields = PatientSerializer.Meta.fields + ['familyHead', 'familyMembers']
        read_only_fields = fields

    def get_familyHead(self, obj):
        if obj.family_id is None:
            return None
        return PatientSerializer(obj.family).data

    def get_familyMembers(self, obj):
        if not obj.is_family_head:
            return []
        return PatientSerializer(obj.members.order_by('id'), many=True).data
