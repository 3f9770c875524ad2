from rest_framework import serializers

ROLES = ['patient', 'doctor', 'hospital_admin', 'central_admin']


class LoginSerializer(serializers.Serializer):
    icNumber = serializers.CharField(max_length=32)
    password = serializers.CharField()
    role = serializers.ChoiceField(choices=ROLES, required=False)

    def validate_icNumber(self, v):
        v = (v or '').strip()
        if not v:
            raise serializers.ValidationError('IC number is required')
        return v

    def validate_password(self, v):
        if not v:
            raise serializers.ValidationError('Password is required')
        return v


class LogoutSerializer(serializers.Serializer):
    refresh = serializers.CharField(required=False, allow_blank=True)
