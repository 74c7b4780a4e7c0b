import logging

from django.contrib.auth import authenticate, get_user_model
from django.utils import timezone
from rest_framework import status
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from .models import PlayerProfile
from .serializers import LoginSerializer, SignupSerializer, UserSerializer
from .tokens import issue_token

User = get_user_model()
logger = logging.getLogger(__name__)


class LoginView(APIView):
    """Exchange a username and password for a bearer token.

    An unknown username signs the player up on the spot, so the same
    form serves first-time and returning players.
    """

    permission_classes = [AllowAny]
    authentication_classes = []
    throttle_scope = "auth_login"

    def post(self, request):
        serializer = LoginSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        username = serializer.validated_data["username"]
        password = serializer.validated_data["password"]

        existing = User.objects.filter(username__iexact=username).first()
        if existing is None:
            signup = SignupSerializer(data=request.data)
            signup.is_valid(raise_exception=True)
            user = signup.save()
            logger.info("Created account for %s", user.username)
            response_status = status.HTTP_201_CREATED
        else:
            if not existing.is_active:
                return Response(
                    {"detail": "Account is disabled."},
                    status=status.HTTP_403_FORBIDDEN,
                )
            user = authenticate(request, username=existing.username, password=password)
            if not user:
                return Response(
                    {"detail": "Invalid username or password."},
                    status=status.HTTP_400_BAD_REQUEST,
                )
            PlayerProfile.objects.get_or_create(user=user)
            response_status = status.HTTP_200_OK

        user.last_login = timezone.now()
        user.save(update_fields=["last_login"])
        return Response(
            {"token": issue_token(user), "user": UserSerializer(user).data},
            status=response_status,
        )


class MeView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request):
        return Response(UserSerializer(request.user).data)
