from django.conf import settings
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from .exceptions import NoDrawer
from .repositories import top_players
from .runtime import default_game
from .serializers import LeaderboardEntrySerializer, LiveScoreboardSerializer


class ScoreboardView(APIView):
    """Live view of the running game: who is connected and who is drawing."""

    permission_classes = [IsAuthenticated]
    game = None

    def get(self, request):
        game = self.game or default_game()
        try:
            drawer = game.registry.find_drawer().player.username
        except NoDrawer:
            drawer = None
        payload = {
            "state": game.coordinator.state.value,
            "drawer": drawer,
            "players": game.scoreboard.snapshot(),
        }
        return Response(LiveScoreboardSerializer(payload).data)


class LeaderboardView(APIView):
    permission_classes = [AllowAny]

    def get(self, request):
        players = top_players(settings.GAME_LEADERBOARD_SIZE)
        rows = [
            {"rank": index, "username": player.username, "points": player.points}
            for index, player in enumerate(players, start=1)
        ]
        return Response(LeaderboardEntrySerializer(rows, many=True).data)
