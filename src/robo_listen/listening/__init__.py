"""Continuous listening: sessions and the controller that owns them."""

from robo_listen.listening.controller import ListenController
from robo_listen.listening.session import ListenSession

__all__ = ["ListenController", "ListenSession"]
