from typing import Optional

from channels.db import database_sync_to_async
from django.contrib.auth import get_user_model
from django.db import DatabaseError, transaction
from django.db.models import F, Max, Min

from authapp.models import PlayerProfile

from .exceptions import NotFound, StorageError
from .models import Word
from .registry import Player

User = get_user_model()


class PlayerRepository:
    """Durable player identities and scores."""

    @database_sync_to_async
    def get(self, player_id) -> Player:
        user = User.objects.filter(pk=player_id, is_active=True).first()
        if user is None:
            raise NotFound(f"Player {player_id} has not signed up.")
        profile, _ = PlayerProfile.objects.get_or_create(user=user)
        return Player(player_id=user.pk, username=user.get_username(), points=profile.points)

    @database_sync_to_async
    def add_points(self, player_id, delta: int) -> int:
        try:
            with transaction.atomic():
                profile, _ = PlayerProfile.objects.get_or_create(user_id=player_id)
                PlayerProfile.objects.filter(pk=profile.pk).update(points=F("points") + delta)
                profile.refresh_from_db(fields=["points"])
        except DatabaseError as exc:
            raise StorageError(f"Could not store points for player {player_id}: {exc}") from exc
        return profile.points


def top_players(limit: int) -> list:
    profiles = (
        PlayerProfile.objects.select_related("user")
        .filter(user__is_active=True)
        .order_by("-points", "user__username")[:limit]
    )
    return [
        Player(player_id=profile.user_id, username=profile.user.get_username(), points=profile.points)
        for profile in profiles
    ]


class WordRepository:
    @database_sync_to_async
    def min_id(self) -> Optional[int]:
        return Word.objects.aggregate(value=Min("id"))["value"]

    @database_sync_to_async
    def max_id(self) -> Optional[int]:
        return Word.objects.aggregate(value=Max("id"))["value"]

    @database_sync_to_async
    def find_by_id(self, word_id: int) -> Optional[str]:
        return Word.objects.filter(pk=word_id).values_list("text", flat=True).first()
