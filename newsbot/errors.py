"""Error taxonomy shared by the store, the gate and the HTTP layer."""

from __future__ import annotations


class NewsBotError(Exception):
    """Base error; ``status_code`` is what the API answers with."""

    status_code = 500

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__


class InvalidInput(NewsBotError):
    status_code = 400


class Unauthorized(NewsBotError):
    status_code = 401


class NotFound(NewsBotError):
    status_code = 404


class UpstreamUnavailable(NewsBotError):
    """Telegram or the push gateway could not be reached or answered badly."""

    status_code = 500


class Internal(NewsBotError):
    status_code = 500
