class MediaBotError(RuntimeError):
    pass


class ResolutionFailedError(MediaBotError):
    pass


class HandoffUnavailableError(MediaBotError):
    pass


class TokenNotFoundError(MediaBotError):
    pass


class MediaDownloadError(MediaBotError):
    pass


class NoAudioError(MediaBotError):
    pass


class CompositionError(MediaBotError):
    def __init__(self, message: str, diagnostics: str = "") -> None:
        super().__init__(message)
        self.diagnostics = diagnostics

    def __str__(self) -> str:
        base = super().__str__()
        if self.diagnostics:
            return f"{base}, stderr: {self.diagnostics}"
        return base


class RandomSourceDegraded(RuntimeWarning):
    """Token was minted from the clock because the OS random source failed."""
