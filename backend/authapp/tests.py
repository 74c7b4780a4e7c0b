from django.contrib.auth import get_user_model
from django.core.cache import cache
from django.test import TestCase, override_settings
from rest_framework.test import APIClient
from rest_framework_simplejwt.tokens import AccessToken

from authapp.models import PlayerProfile
from authapp.tokens import issue_token, verify_token

User = get_user_model()


@override_settings(ALLOWED_HOSTS=["testserver", "localhost", "127.0.0.1"])
class LoginFlowTests(TestCase):
    password = "Sketch-Pass-2024"

    def setUp(self):
        cache.clear()
        self.client = APIClient()

    def _login(self, username, password=None):
        return self.client.post(
            "/api/auth/login/",
            {"username": username, "password": password or self.password},
            format="json",
        )

    def test_unknown_username_signs_up(self):
        response = self._login("SketchMaster")
        self.assertEqual(response.status_code, 201)

        body = response.json()
        user = User.objects.get(username="SketchMaster")
        self.assertEqual(body["user"], {"id": user.pk, "username": "SketchMaster", "points": 0})
        self.assertTrue(PlayerProfile.objects.filter(user=user).exists())
        self.assertEqual(verify_token(body["token"]), user.pk)
        self.assertIsNotNone(user.last_login)

    def test_existing_player_logs_in(self):
        user = User.objects.create_user(username="alice", password=self.password)
        PlayerProfile.objects.create(user=user, points=5)

        response = self._login("ALICE")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["user"]["points"], 5)
        self.assertEqual(User.objects.filter(username__iexact="alice").count(), 1)

    def test_wrong_password_is_rejected(self):
        User.objects.create_user(username="alice", password=self.password)
        response = self._login("alice", "not-the-password")
        self.assertEqual(response.status_code, 400)
        self.assertNotIn("token", response.json())

    def test_disabled_account_is_forbidden(self):
        User.objects.create_user(username="alice", password=self.password, is_active=False)
        response = self._login("alice")
        self.assertEqual(response.status_code, 403)

    def test_signup_enforces_password_and_username_rules(self):
        self.assertEqual(self._login("newbie", "123").status_code, 400)
        self.assertEqual(self._login("no spaces allowed").status_code, 400)
        self.assertFalse(User.objects.filter(username="newbie").exists())

    def test_me_requires_bearer_token(self):
        self.assertEqual(self.client.get("/api/auth/me/").status_code, 401)

        token = self._login("carol").json()["token"]
        self.client.credentials(HTTP_AUTHORIZATION=f"Bearer {token}")
        response = self.client.get("/api/auth/me/")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["username"], "carol")


class TokenTests(TestCase):
    def test_issue_and_verify(self):
        user = User.objects.create_user(username="erin", password="Sketch-Pass-2024")
        raw = issue_token(user)
        self.assertEqual(AccessToken(raw)["username"], "erin")
        self.assertEqual(verify_token(f"  {raw} "), user.pk)

    def test_garbage_is_not_a_token(self):
        for raw in (None, "", "   ", "abc.def.ghi", 42):
            with self.subTest(raw=raw):
                self.assertIsNone(verify_token(raw))
