from rest_framework import serializers

from .scoreboard import ScoreSerializer


class LeaderboardEntrySerializer(serializers.Serializer):
    rank = serializers.IntegerField()
    username = serializers.CharField()
    points = serializers.IntegerField()


class LiveScoreboardSerializer(serializers.Serializer):
    state = serializers.CharField()
    drawer = serializers.CharField(allow_null=True)
    players = ScoreSerializer(many=True)
