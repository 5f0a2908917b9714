from __future__ import annotations


class DecohereError(Exception):
    pass


class SynthesisExhausted(DecohereError):
    def __init__(self, identity: str, attempts: int, last_feedback: str = "") -> None:
        super().__init__(f'Failed to satisfy "{identity}" after {attempts} attempt(s).')
        self.identity = identity
        self.attempts = attempts
        self.last_feedback = last_feedback


class EmptyCandidateSet(DecohereError):
    def __init__(self) -> None:
        super().__init__("No candidates to select from")


class OracleError(DecohereError):
    def __init__(self, reason: str, detail: str = "") -> None:
        message = f"ORACLE_ERROR:{reason}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.reason = reason
        self.detail = detail


class BundleError(DecohereError):
    pass
