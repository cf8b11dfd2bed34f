"""Error taxonomy for resolution, cache and transport failures."""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple


class HactlError(Exception):
    kind = "error"
    exit_code = 1

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.kind, "message": self.message}


class ConfigError(HactlError):
    kind = "config_error"
    exit_code = 10


class TransportError(HactlError):
    kind = "transport_error"
    exit_code = 8

    def __init__(self, message: str, reason: Optional[str] = None) -> None:
        super().__init__(message)
        self.reason = reason

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        if self.reason:
            data["reason"] = self.reason
        return data


class CacheRefreshError(HactlError):
    """A refresh failed; any previously persisted snapshot is left untouched."""

    kind = "cache_refresh_error"
    exit_code = 7

    def __init__(self, category: str, reason: str) -> None:
        super().__init__(f"refresh of {category} failed: {reason}")
        self.category = category
        self.reason = reason


class DispatchError(HactlError):
    kind = "dispatch_error"
    exit_code = 9

    def __init__(self, message: str, failures: Optional[List[Dict[str, Any]]] = None) -> None:
        super().__init__(message)
        self.failures = list(failures or [])

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["failures"] = self.failures
        return data


class ResolutionError(HactlError):
    """Terminal failure of a single command resolution."""

    kind = "resolution_error"
    # set by the resolver once the utterance has parsed
    intent: Any = None


class UtteranceSyntaxError(ResolutionError):
    kind = "syntax_error"
    exit_code = 2

    def __init__(self, message: str, text: str, span: Tuple[int, int]) -> None:
        super().__init__(message)
        self.text = text
        self.span = span

    @property
    def token(self) -> str:
        start, end = self.span
        return self.text[start:end]

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["span"] = list(self.span)
        data["token"] = self.token
        return data


class NoContextError(ResolutionError):
    kind = "no_context"
    exit_code = 3

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(
            message
            or "no recent target to apply this to; name the device explicitly, "
            "e.g. 'turn on kitchen light'"
        )


class NoMatchError(ResolutionError):
    kind = "no_match"
    exit_code = 4

    def __init__(self, phrase: str, reason: str, suggestions: Optional[List[Dict[str, Any]]] = None) -> None:
        super().__init__(f"nothing matches '{phrase}': {reason}")
        self.phrase = phrase
        self.reason = reason
        self.suggestions = list(suggestions or [])

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["phrase"] = self.phrase
        data["suggestions"] = self.suggestions
        return data


class AmbiguousMatchError(ResolutionError):
    kind = "ambiguous"
    exit_code = 5

    def __init__(self, phrase: str, candidates: List[Dict[str, Any]]) -> None:
        names = ", ".join(str(c.get("id")) for c in candidates)
        super().__init__(f"'{phrase}' is ambiguous: {names}")
        self.phrase = phrase
        self.candidates = list(candidates)

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["phrase"] = self.phrase
        data["candidates"] = self.candidates
        return data


class CacheUnavailableError(ResolutionError):
    """No snapshot exists and a refresh could not produce one."""

    kind = "cache_unavailable"
    exit_code = 6

    def __init__(self, category: str, reason: str) -> None:
        super().__init__(f"{category} registry unavailable: {reason}")
        self.category = category
        self.reason = reason
