from django.urls import path

from .views import LeaderboardView, ScoreboardView

urlpatterns = [
    path("scoreboard/", ScoreboardView.as_view(), name="game_scoreboard"),
    path("leaderboard/", LeaderboardView.as_view(), name="game_leaderboard"),
]
