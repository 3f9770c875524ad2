from rest_framework import serializers

from network.models import AuditLog, Hospital


class AuditLogQuerySerializer(serializers.Serializer):
    actorId = serializers.CharField(required=False)
    icNumber = serializers.CharField(required=False)
    action = serializers.ChoiceField(choices=[c for c, _ in AuditLog.ACTION_CHOICES], required=False)
    startDate = serializers.DateTimeField(required=False)
    endDate = serializers.DateTimeField(required=False)
    limit = serializers.IntegerField(required=False, min_value=1, max_value=1000, default=100)

    def validate(self, attrs):
        start, end = attrs.get('startDate'), attrs.get('endDate')
        if start and end and start > end:
            raise serializers.ValidationError('startDate must not be after endDate')
        return attrs


class PersonalLogQuerySerializer(serializers.Serializer):
    limit = serializers.IntegerField(required=False, min_value=1, max_value=100)


class HospitalAccessSerializer(serializers.Serializer):
    hospitalId = serializers.CharField(max_length=50)
    isBlocked = serializers.BooleanField()

    def validate_hospitalId(self, v):
        if not Hospital.objects.filter(id=v, is_active=True).exists():
            raise serializers.ValidationError('Unknown hospital')
        return v
