from django.contrib.auth import get_user_model
from django.contrib.auth.password_validation import validate_password
from rest_framework import serializers

from .models import PlayerProfile

User = get_user_model()


class LoginSerializer(serializers.Serializer):
    username = serializers.RegexField(r"^[\w.@+-]+$", min_length=3, max_length=32)
    password = serializers.CharField(write_only=True, trim_whitespace=False)

    def validate_username(self, value):
        return value.strip()


class SignupSerializer(LoginSerializer):
    def validate_username(self, value):
        value = super().validate_username(value)
        if User.objects.filter(username__iexact=value).exists():
            raise serializers.ValidationError("Username is already in use.")
        return value

    def validate_password(self, value):
        validate_password(value)
        return value

    def create(self, validated_data):
        user = User(username=validated_data["username"])
        user.set_password(validated_data["password"])
        user.save()
        PlayerProfile.objects.get_or_create(user=user)
        return user


class UserSerializer(serializers.ModelSerializer):
    points = serializers.SerializerMethodField()

    class Meta:
        model = User
        fields = ["id", "username", "points"]

    def get_points(self, obj):
        profile, _ = PlayerProfile.objects.get_or_create(user=obj)
        return profile.points
