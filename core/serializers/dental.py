import bleach
from rest_framework import serializers

from core.models import DentalRecord


class DentalRecordCreateSerializer(serializers.Serializer):
    complaint = serializers.CharField(required=False, allow_blank=True)
    historyOfPresentComplaint = serializers.CharField(source='history_of_present_complaint', required=False, allow_blank=True)
    pastDentalHistory = serializers.CharField(source='past_dental_history', required=False, allow_blank=True)
    extraOralExamination = serializers.CharField(source='extra_oral_examination', required=False, allow_blank=True)
    intraOralExamination = serializers.CharField(source='intra_oral_examination', required=False, allow_blank=True)
    investigations = serializers.CharField(required=False, allow_blank=True)
    xrayFindings = serializers.CharField(source='xray_findings', required=False, allow_blank=True)
    provisionalDiagnosis = serializers.ListField(source='provisional_diagnosis', child=serializers.CharField(max_length=255),
                                                 required=False)
    treatmentPlan = serializers.ListField(source='treatment_plan', child=serializers.CharField(max_length=255),
                                          required=False)
    treatmentDone = serializers.CharField(source='treatment_done', required=False, allow_blank=True)

    def to_internal_value(self, data):
        values = super().to_internal_value(data)
        for k, v in values.items():
            if isinstance(v, str):
                values[k] = bleach.clean(v, strip=True)
            elif isinstance(v, list):
                values[k] = [bleach.clean(x, strip=True) for x in v]
        return values


class DentalRecordSerializer(serializers.ModelSerializer):
    patientId = serializers.IntegerField(source='patient_id', read_only=True)
    doctorId = serializers.IntegerField(source='doctor_id', read_only=True)
    doctorName = serializers.SerializerMethodField()
    historyOfPresentComplaint = serializers.CharField(source='history_of_present_complaint', read_only=True)
    pastDentalHistory = serializers.CharField(source='past_dental_history', read_only=True)
    extraOralExamination = serializers.CharField(source='extra_oral_examination', read_only=True)
    intraOralExamination = serializers.CharField(source='intra_oral_examination', read_only=True)
    xrayFindings = serializers.CharField(source='xray_findings', read_only=True)
    provisionalDiagnosis = serializers.JSONField(source='provisional_diagnosis', read_only=True)
    treatmentPlan = serializers.JSONField(source='treatment_plan', read_only=True)
    treatmentDone = serializers.CharField(source='treatment_done', read_only=True)
    createdAt = serializers.DateTimeField(source='created_at', read_only=True)
    updatedAt = serializers.DateTimeField(source='updated_at', read_only=True)

    class Meta:
        model = DentalRecord
        fields = [
            'id', 'patientId', 'doctorId', 'doctorName', 'complaint', 'historyOfPresentComplaint',
            'pastDentalHistory', 'extraOralExamination', 'intraOralExamination', 'investigations',
            'xrayFindings', 'provisionalDiagnosis', 'treatmentPlan', 'treatmentDone', 'createdAt', 'updatedAt',
        ]
        read_only_fields = fields

    def get_doctorName(self, obj):
        if not obj.doctor:
            return None
        return obj.doctor.get_full_name() or obj.doctor.username
