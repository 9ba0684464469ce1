from django.contrib.auth import authenticate
from rest_framework import serializers


class LoginSerializer(serializers.Serializer):
    """Checks the credentials; ``validated_data['user']`` is None when they do not match."""
    username = serializers.CharField(max_length=150)
    password = serializers.CharField(trim_whitespace=False, write_only=True,
                                     style={'input_type': 'password'})

    def validate_username(self, v):
        v = (v or '').strip()
        if not v:
            raise serializers.ValidationError('Username is required')
        return v

    def validate(self, attrs):
        attrs['user'] = authenticate(self.context.get('request'), username=attrs['username'],
                                     password=attrs['password'])
        return attrs
