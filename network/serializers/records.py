import bleach
from rest_framework import serializers

VISIT_TYPES = ['outpatient', 'inpatient', 'emergency']


def _clean(v):
    return bleach.clean((v or '').strip(), tags=set(), strip=True)


class CleanListField(serializers.ListField):
    child = serializers.CharField(max_length=255)

    def to_internal_value(self, data):
        return [c for c in (_clean(v) for v in super().to_internal_value(data)) if c]


class VitalSignsSerializer(serializers.Serializer):
    bloodPressureSystolic = serializers.IntegerField(required=False, min_value=0, max_value=400)
    bloodPressureDiastolic = serializers.IntegerField(required=False, min_value=0, max_value=300)
    heartRate = serializers.IntegerField(required=False, min_value=0, max_value=400)
    temperature = serializers.FloatField(required=False, min_value=20, max_value=50)
    respiratoryRate = serializers.IntegerField(required=False, min_value=0, max_value=100)
    oxygenSaturation = serializers.IntegerField(required=False, min_value=0, max_value=100)
    weight = serializers.FloatField(required=False, min_value=0)
    height = serializers.FloatField(required=False, min_value=0)


class PrescriptionSerializer(serializers.Serializer):
    medicationName = serializers.CharField(max_length=255)
    dosage = serializers.CharField(max_length=100, required=False, allow_blank=True)
    frequency = serializers.CharField(max_length=100, required=False, allow_blank=True)
    duration = serializers.CharField(max_length=100, required=False, allow_blank=True)
    instructions = serializers.CharField(required=False, allow_blank=True)

    def validate_medicationName(self, v):
        v = _clean(v)
        if not v:
            raise serializers.ValidationError('Medication name is required')
        return v

    def validate_instructions(self, v):
        return _clean(v)


class RecordCreateSerializer(serializers.Serializer):
    icNumber = serializers.CharField(max_length=32)
    doctorId = serializers.CharField(required=False, allow_null=True, allow_blank=True)
    patientName = serializers.CharField(max_length=255, required=False, allow_blank=True)
    visitDate = serializers.DateTimeField()
    visitType = serializers.ChoiceField(choices=VISIT_TYPES, default='outpatient')
    chiefComplaint = serializers.CharField(required=False, allow_blank=True, default='')
    diagnosis = CleanListField(required=False, default=list)
    diagnosisCodes = CleanListField(required=False, default=list)
    symptoms = CleanListField(required=False, default=list)
    notes = serializers.CharField(required=False, allow_blank=True, default='')
    vitalSigns = VitalSignsSerializer(required=False, allow_null=True)
    prescriptions = PrescriptionSerializer(many=True, required=False, default=list)
    followUpDate = serializers.DateField(required=False, allow_null=True)

    def validate_icNumber(self, v):
        v = _clean(v)
        if not v:
            raise serializers.ValidationError('IC number is required')
        return v

    def validate_chiefComplaint(self, v):
        return _clean(v)

    def validate_notes(self, v):
        return _clean(v)

    def validate_patientName(self, v):
        return _clean(v)

    def node_payload(self) -> dict:
        """Validated record fields in wire form (JSON-safe, camelCase)."""
        vd = self.validated_data
        payload = {
            'visitDate': vd['visitDate'].isoformat(),
            'visitType': vd['visitType'],
            'chiefComplaint': vd.get('chiefComplaint', ''),
            'diagnosis': vd.get('diagnosis', []),
            'diagnosisCodes': vd.get('diagnosisCodes', []),
            'symptoms': vd.get('symptoms', []),
            'notes': vd.get('notes', ''),
            'vitalSigns': dict(vd['vitalSigns']) if vd.get('vitalSigns') else None,
            'prescriptions': [dict(p) for p in vd.get('prescriptions', [])],
            'followUpDate': vd['followUpDate'].isoformat() if vd.get('followUpDate') else None,
        }
        if vd.get('patientName'):
            payload['patientName'] = vd['patientName']
        return payload


BLOOD_TYPES = ['A+', 'A-', 'B+', 'B-', 'AB+', 'AB-', 'O+', 'O-']


class PatientRegisterSerializer(serializers.Serializer):
    icNumber = serializers.CharField(max_length=32)
    fullName = serializers.CharField(max_length=255)
    dateOfBirth = serializers.DateField(required=False, allow_null=True)
    gender = serializers.ChoiceField(choices=['male', 'female'], required=False, allow_blank=True)
    bloodType = serializers.ChoiceField(choices=BLOOD_TYPES, required=False, allow_blank=True)
    phone = serializers.CharField(max_length=32, required=False, allow_blank=True)
    email = serializers.EmailField(required=False, allow_blank=True)
    address = serializers.CharField(required=False, allow_blank=True)
    emergencyContact = serializers.CharField(max_length=255, required=False, allow_blank=True)
    emergencyPhone = serializers.CharField(max_length=32, required=False, allow_blank=True)
    allergies = CleanListField(required=False, default=list)
    chronicConditions = CleanListField(required=False, default=list)

    def validate_icNumber(self, v):
        v = _clean(v)
        if not v:
            raise serializers.ValidationError('IC number is required')
        return v

    def validate_fullName(self, v):
        v = _clean(v)
        if not v:
            raise serializers.ValidationError('Full name is required')
        return v

    def validate_address(self, v):
        return _clean(v)

    def validate_emergencyContact(self, v):
        return _clean(v)

    def node_payload(self) -> dict:
        vd = dict(self.validated_data)
        vd.pop('icNumber')
        if vd.get('dateOfBirth'):
            vd['dateOfBirth'] = vd['dateOfBirth'].isoformat()
        return vd
