from __future__ import annotations


class GhostCmdError(RuntimeError):
    """Base class for failures surfaced to the user as inline notices."""


class ConfigError(GhostCmdError):
    pass


class CredentialMissing(GhostCmdError):
    def __init__(self, provider: str, slot: str) -> None:
        super().__init__(f"{slot} not found")
        self.provider = provider
        self.slot = slot


class BackendError(GhostCmdError):
    def __init__(self, provider: str, message: str) -> None:
        super().__init__(f"[{provider}] {message}")
        self.provider = provider
        self.message = message


class EmptyResult(GhostCmdError):
    def __init__(self, provider: str) -> None:
        super().__init__(f"[{provider}] no suggestion")
        self.provider = provider
