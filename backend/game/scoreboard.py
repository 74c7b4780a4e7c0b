import json
from dataclasses import dataclass
from typing import List

from rest_framework import serializers


@dataclass(frozen=True)
class Score:
    username: str
    is_drawing: bool
    points: int


class ScoreSerializer(serializers.Serializer):
    username = serializers.CharField()
    isDrawing = serializers.BooleanField(source="is_drawing")
    points = serializers.IntegerField()


class ScoreBoard:
    def __init__(self, registry):
        self.registry = registry

    def snapshot(self) -> List[Score]:
        return [
            Score(
                username=session.player.username,
                is_drawing=session.is_drawing,
                points=session.player.points,
            )
            for session in self.registry.list_active()
        ]

    def encode(self) -> str:
        return json.dumps(ScoreSerializer(self.snapshot(), many=True).data, ensure_ascii=False)
