from django.urls import re_path

from .consumers import DrawConsumer, GameConsumer
from .runtime import default_game


def build_websocket_urlpatterns(game):
    return [
        re_path(r"ws/game/?$", GameConsumer.as_asgi(game=game)),
        re_path(r"ws/draw/?$", DrawConsumer.as_asgi(game=game)),
    ]


websocket_urlpatterns = build_websocket_urlpatterns(default_game())
